import logging

import pandas as pd
import pytest

import main
from logging_config import PRINT_LEVEL, LevelFilter, get_logger, setup_multi_level_logging
from Utils.Generell.plots import plot_cg_convergence, plot_columns_per_node
from Utils.Generell.utils import boxed_print


def test_cli_solves_sample(sample_path, tmp_path, restore_logging, capsys):
    csv_path = tmp_path / 'routes.csv'
    plot_path = tmp_path / 'cg.png'
    code = main.main([sample_path, '--infeasible-node-policy', 'prune', '--time-limit', '300',
                      '--csv', str(csv_path), '--plot', str(plot_path), '--deterministic'])

    assert code == 0
    out = capsys.readouterr().out
    assert 'Instance: sample4' in out
    df = pd.read_csv(csv_path)
    assert list(df['flow']) == [0, 1, 2]
    assert {'links', 'wavelengths', 'cost', 'route'} <= set(df.columns)
    assert plot_path.exists() and plot_path.stat().st_size > 0


def test_cli_reports_bad_dataset(tmp_path, restore_logging):
    bad = tmp_path / 'bad.oaar'
    bad.write_text("broken\n2 0 1 0\n")
    assert main.main([str(bad)]) == 1


def test_cli_rejects_invalid_settings(sample_path, restore_logging):
    assert main.main([sample_path, '--wavelengths', '0']) == 1


def test_cli_rejects_unknown_choice(sample_path):
    with pytest.raises(SystemExit):
        main.main([sample_path, '--search', 'random'])


def test_pricing_workers_enable_parallel_pricing(sample_path):
    args = main.build_parser().parse_args([sample_path, '--pricing-workers', '4'])
    settings = main.settings_from_args(args)
    assert settings['use_parallel_pricing'] and settings['n_pricing_workers'] == 4
    assert settings['search_strategy'] == 'dfs'


def test_print_level_logging(tmp_path, restore_logging, capsys):
    setup_multi_level_logging(base_log_dir=str(tmp_path), enable_console=True, print_all_logs=False)
    logger = get_logger('routing.test')
    logger.info('hidden on console')
    logger.print('shown on console')
    for handler in logging.getLogger().handlers:
        handler.flush()

    out = capsys.readouterr().out
    assert 'shown on console' in out
    assert 'hidden on console' not in out
    info_logs = list((tmp_path / 'info').glob('*.log'))
    assert len(info_logs) == 1 and 'hidden on console' in info_logs[0].read_text()


def test_level_filter():
    record = logging.LogRecord('x', PRINT_LEVEL, __file__, 1, 'msg', None, None)
    assert LevelFilter(PRINT_LEVEL).filter(record)
    assert not LevelFilter(logging.INFO).filter(record)


def test_boxed_print(capsys):
    boxed_print('abc', width=10)
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == '*' * 12
    assert lines[1] == '*   abc    *'
    assert lines[-1] == '*' * 12


def test_plots_are_written(tmp_path):
    target = tmp_path / 'history.png'
    plot_cg_convergence([10.0, 8.5, 8.0, 8.0], filename=str(target))
    assert target.exists()

    bars = tmp_path / 'columns.png'
    plot_columns_per_node([{'Node': 0, 'Columns Added': 3}, {'Node': 0, 'Columns Added': 1},
                           {'Node': 1, 'Columns Added': 2}], filename=str(bars))
    assert bars.exists()
