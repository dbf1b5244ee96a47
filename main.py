#!/usr/bin/env python3

import argparse
import os
from flow_analyzer import DataLoadError, JourneyFlowAnalyzer
from flow_config import DEFAULT_CONFIG
from visualizer import JourneyVisualizer


SAMPLE_ROWS = [
    {"strClientId": "C1", "strSessionId": "S1", "MethodName": "ValidateAddress"},
    {"strClientId": "C1", "strSessionId": "S1", "MethodName": "CreateSession"},
    {"strClientId": "C1", "strSessionId": "S1", "MethodName": "CreateSession"},

    {"strClientId": "C2", "strSessionId": "S2", "MethodName": "CreateSession"},
    {"strClientId": "C2", "strSessionId": "S2", "MethodName": "ValidateAddress"},
    {"strClientId": "C2", "strSessionId": "S2", "MethodName": "GetQualifiedProductsV2"},
    {"strClientId": "C2", "strSessionId": "S2", "MethodName": "CreateOrder"},
    {"strClientId": "C2", "strSessionId": "S2", "MethodName": "saveOrderedProducts"},
    {"strClientId": "C2", "strSessionId": "S2", "MethodName": "SAVESMARTCART_SUCCESS"},
    {"strClientId": "C2", "strSessionId": "S2", "MethodName": "SubmitOrder"},

    {"strClientId": "C2", "strSessionId": "S3", "MethodName": "CreateSession"},
    {"strClientId": "C2", "strSessionId": "S3", "MethodName": "CreateOrder"},
    {"strClientId": "C2", "strSessionId": "S3", "MethodName": "setDueDate"},
    {"strClientId": "C2", "strSessionId": "S3", "MethodName": "SubmitOrder"},

    {"strClientId": "C3", "strSessionId": "S4", "MethodName": "CreateSession"},
    {"strClientId": "C3", "strSessionId": "S4", "MethodName": "CreateOrder"},
]


def build_parser():
    parser = argparse.ArgumentParser(description='Build a customer journey Sankey from event logs')
    parser.add_argument('--data', type=str,
                      help='Path or URL of the event log (Excel, CSV or JSON)')
    parser.add_argument('--client-filter', type=str, default='',
                      help='Only keep rows whose client id contains this text (case-insensitive)')
    parser.add_argument('--client-column', type=str, default=DEFAULT_CONFIG.client_column,
                      help=f'Client id column (default: {DEFAULT_CONFIG.client_column})')
    parser.add_argument('--session-column', type=str, default=DEFAULT_CONFIG.session_column,
                      help=f'Session id column (default: {DEFAULT_CONFIG.session_column})')
    parser.add_argument('--event-column', type=str, default=DEFAULT_CONFIG.event_column,
                      help=f'Event/method name column (default: {DEFAULT_CONFIG.event_column})')
    parser.add_argument('--viz-type', type=str, default='sankey',
                      choices=['sankey', 'kpi', 'heatmap', 'network', 'graphviz', 'all', 'none'],
                      help='Type of visualization to create (use "none" to skip visualization)')
    parser.add_argument('--output-dir', type=str, default='output',
                      help='Directory to save visualizations')
    parser.add_argument('--show-stats', action='store_true',
                      help='Show flow statistics')
    parser.add_argument('--summary', action='store_true',
                      help='Print the per-client step summary table')
    parser.add_argument('--summary-csv', type=str,
                      help='Write the per-client step summary table to this CSV file')
    parser.add_argument('--top-paths', type=int, default=5,
                      help='Number of top journeys to display (default: 5)')
    parser.add_argument('--no-progress', action='store_true',
                      help='Disable progress bars and verbose loading messages')
    parser.add_argument('--interactive', action='store_true',
                      help='Start interactive mode for multiple queries')
    parser.add_argument('--demo', action='store_true',
                      help='Run against built-in sample rows')
    return parser


def print_metrics(analyzer):
    metrics = analyzer.metrics
    print(f"Total Sessions: {metrics['total']}")
    print(f"Completed Orders: {metrics['completed']}")
    print(f"Dropped Sessions: {metrics['dropped']}")


def print_statistics(analyzer):
    stats = analyzer.get_statistics()
    print("\n=== Flow Statistics ===")
    print(f"Total Sessions: {stats['total_sessions']}")
    print(f"Completion Rate: {stats['completion_rate']:.2f}%")
    print(f"Unique Steps: {stats['unique_steps']}")
    print(f"Average Path Length: {stats['average_path_length']}")
    print(f"Total Transitions: {stats['total_transitions']}")
    print("\nMost Visited Steps:")
    for step, count in stats['most_visited_steps'][:5]:
        print(f"  - {step}: {count} sessions")
    drops = analyzer.get_drop_off_points()
    if drops:
        print("\nDrop-off Points:")
        for label, count in drops[:5]:
            print(f"  - {label}: {count} sessions")


def print_top_paths(analyzer, top_n):
    paths = analyzer.get_most_common_paths(top_n=top_n)
    if not paths:
        return
    print(f"\nTop {len(paths)} journeys:")
    for i, (path, count) in enumerate(paths, 1):
        print(f"{i}. {' -> '.join(path)} (Count: {count})")


def render(analyzer, viz_type, output_dir):
    if viz_type == 'none':
        return {}
    if analyzer.graph is None:
        print("No sessions to visualize")
        return {}

    visualizer = JourneyVisualizer(analyzer)
    os.makedirs(output_dir, exist_ok=True)

    if viz_type == 'all':
        outputs = visualizer.create_all(output_dir)
    elif viz_type == 'sankey':
        outputs = {'sankey': f"{output_dir}/sankey_diagram.html"}
        visualizer.create_interactive_sankey(outputs['sankey'])
    elif viz_type == 'kpi':
        outputs = {'kpi': f"{output_dir}/kpi_chart.html"}
        visualizer.create_kpi_chart(outputs['kpi'])
    elif viz_type == 'heatmap':
        outputs = {'heatmap': f"{output_dir}/heatmap.html"}
        visualizer.create_heatmap(outputs['heatmap'])
    elif viz_type == 'network':
        outputs = {'network': f"{output_dir}/network_graph.html"}
        visualizer.create_network_graph(output_file=outputs['network'])
    else:
        outputs = {'graphviz': f"{output_dir}/journey_flow.dot"}
        visualizer.export_to_graphviz(outputs['graphviz'])

    print("\nVisualization complete! Check the output directory for results.")
    return outputs


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.data and not args.demo:
        parser.error("--data is required (or use --demo to run against sample rows)")

    config = DEFAULT_CONFIG.with_columns(args.client_column, args.session_column, args.event_column)
    show_progress = not args.no_progress

    if args.interactive:
        from interactive import InteractiveJourneyAnalyzer
        source = SAMPLE_ROWS if args.demo else args.data
        try:
            InteractiveJourneyAnalyzer(source, config=config, show_progress=show_progress).run()
        except DataLoadError as e:
            print(f"Error: {e}")
            return 1
        return 0

    analyzer = JourneyFlowAnalyzer(config=config, show_progress=show_progress)
    if args.client_filter:
        print(f"Filtering clients matching '{args.client_filter}'...")
        analyzer.client_filter = args.client_filter

    try:
        if args.demo:
            print("Running demo with sample rows...")
            analyzer.load_data(SAMPLE_ROWS)
        else:
            print(f"Loading data from {args.data}...")
            analyzer.load_data(args.data)
    except DataLoadError as e:
        print(f"Error: {e}")
        return 1

    print()
    print_metrics(analyzer)

    if args.show_stats:
        print_statistics(analyzer)

    print_top_paths(analyzer, args.top_paths)

    if args.summary:
        print("\n=== Session Summary by Client & Step ===")
        print(analyzer.summary_dataframe().to_string())

    if args.summary_csv:
        JourneyVisualizer(analyzer).export_summary_csv(args.summary_csv)

    render(analyzer, args.viz_type, args.output_dir)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
