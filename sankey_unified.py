"""
Helper module for turning aggregated journey transitions into Sankey data.
Every client, step and drop marker is represented by a single node no matter
how many sessions pass through it.
"""

from decimal import ROUND_HALF_UP, Decimal

from flow_config import DEFAULT_CONFIG, rgba


def format_pct(value):
    """Round a percentage to one decimal, ties away from zero.

    Decimal(float) is exact, so ties are judged on the stored binary value.
    """
    return Decimal(value).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def create_unified_sankey_data(aggregation, config=DEFAULT_CONFIG):
    """
    Create node and link data for the journey Sankey diagram.

    Args:
        aggregation: output of flow_analyzer.aggregate_flows
        config: FlowConfig with the position and palette tables

    Returns:
        dict with 'nodes' and 'links' plus flat 'labels', 'x_positions',
        'y_positions' and 'node_colors' lists aligned by node index
    """
    link_counts = aggregation['link_counts']
    out_totals = aggregation['out_totals']
    entry_counts = aggregation['entry_counts']
    clients = aggregation['clients']
    total_sessions = aggregation['total_sessions']

    client_rank = {client: i for i, client in enumerate(clients)}
    client_gap = 1 / (len(clients) + 1)

    nodes = []
    node_map = {}  # label -> node index

    def node_index(label, x):
        if label in node_map:
            return node_map[label]
        # Only clients are pinned vertically; the renderer places the rest
        y = client_gap * (client_rank[label] + 1) if label in client_rank else None
        node_map[label] = len(nodes)
        nodes.append({
            'label': label,
            'x': x,
            'y': y,
            'color': config.palette.get(label, config.palette['DEFAULT'])
        })
        return node_map[label]

    # Nodes are numbered in the order they first appear in a transition
    for source, target in link_counts:
        node_index(source, config.column_x.get(source, config.column_x['CLIENT']))
        if config.is_drop(target):
            target_x = config.column_x['DROP']
        else:
            target_x = config.column_x.get(target, config.column_x['DROP'])
        node_index(target, target_x)

    for node in nodes:
        label = node['label']
        if label in client_rank:
            node['display_label'] = label
        elif (config.is_step(label) or config.is_drop(label)) and total_sessions > 0:
            pct = entry_counts.get(label, 0) / total_sessions * 100
            node['display_label'] = f"{label} ({format_pct(pct)}%)"
        else:
            node['display_label'] = label

    links = []
    for (source, target), count in link_counts.items():
        source_idx = node_map[source]
        pct = count / out_totals[source] * 100

        if config.is_drop(target):
            color = rgba(config.palette['DROP'], 0.65)
        elif target == config.terminal_step:
            color = rgba(config.success_color, 0.8)
        else:
            color = rgba(nodes[source_idx]['color'], 0.6)

        links.append({
            'source': source_idx,
            'target': node_map[target],
            'value': count,
            'percentage': float(format_pct(pct)),
            'color': color,
            'hover': f"{source} → {target}<br>{count} sessions ({format_pct(pct)}%)"
        })

    return {
        'nodes': nodes,
        'links': links,
        'labels': [node['display_label'] for node in nodes],
        'x_positions': [node['x'] for node in nodes],
        'y_positions': [node['y'] for node in nodes],
        'node_colors': [node['color'] for node in nodes],
        'client_count': len(clients),
        'total_sessions': total_sessions
    }
