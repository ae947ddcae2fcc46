def boxed_print(*args, width=150, border='*', center=True):
    """
    Prints any number of inputs in a fixed-width box with borders.
    Automatically stringifies and wraps long lines.
    """
    text = '\n'.join(str(arg) for arg in args)
    lines = text.split('\n')

    print(border * (width + 2))
    for line in lines:
        while len(line) > width:
            part = line[:width]
            print(f"{border}{part.center(width) if center else part.ljust(width)}{border}")
            line = line[width:]
        print(f"{border}{line.center(width) if center else line.ljust(width)}{border}")
    print(border * (width + 2))


def format_route(data, info):
    """One-line description of a selected column, e.g. '0 -> 1 -> 3 [1:0,1]'."""
    nodes = []
    by_head = {data.links[l].head: l for l in info['links']}
    node = data.flows[info['column'][0]].source
    nodes.append(node)
    while node in by_head and len(nodes) <= len(info['links']):
        node = data.links[by_head[node]].tail
        nodes.append(node)
    route = ' -> '.join(str(n) for n in nodes)
    if info['wavelengths']:
        slots = ' '.join(f"{l}:{','.join(str(w) for w in ws)}" for l, ws in info['wavelengths'].items())
        route += f" [{slots}]"
    if info['is_fallback']:
        route += ' (fallback)'
    return route
