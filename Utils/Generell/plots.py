import pandas as pd
import numpy as np
import matplotlib.pyplot as plt


def plot_cg_convergence(history, filename=None, title='Column generation convergence'):
    """
    Plot the restricted master LP objective per column generation iteration.

    Parameters:
    - history (list): LP objective values in iteration order (ColumnGeneration.lp_obj_history)
    - filename (str): If given, the figure is written there; otherwise it is shown
    - title (str): Plot title

    Returns:
    - fig: The matplotlib figure
    """
    if filename is not None:
        plt.switch_backend('Agg')

    values = np.asarray(history, dtype=float)
    iterations = np.arange(1, len(values) + 1)

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.plot(iterations, values, marker='o', markersize=3, linewidth=1.2, color='tab:blue', label='LP objective')
    if len(values):
        ax.axhline(values.min(), linestyle='--', color='tab:gray', alpha=0.5, label=f'best {values.min():.2f}')

    ax.set_xlabel('Iteration')
    ax.set_ylabel('Objective')
    ax.set_title(title)
    ax.grid(False)
    ax.legend(loc='upper right', fancybox=True, shadow=False)
    plt.tight_layout()

    if filename is not None:
        fig.savefig(filename, dpi=150)
        plt.close(fig)
    else:
        plt.show()
    return fig


def plot_columns_per_node(iteration_stats, filename=None):
    """
    Bar plot of the columns added per search node.

    Parameters:
    - iteration_stats (list): Dicts with 'Node' and 'Columns Added' (ColumnGeneration.iteration_stats)
    - filename (str): If given, the figure is written there; otherwise it is shown
    """
    if filename is not None:
        plt.switch_backend('Agg')

    df = pd.DataFrame(iteration_stats, columns=['Node', 'Columns Added'])
    per_node = df.groupby('Node')['Columns Added'].sum()

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.bar(per_node.index.astype(str), per_node.values, color='tab:orange')
    ax.set_xlabel('Node')
    ax.set_ylabel('Columns added')
    ax.set_title('Columns generated per node')
    plt.tight_layout()

    if filename is not None:
        fig.savefig(filename, dpi=150)
        plt.close(fig)
    else:
        plt.show()
    return fig
