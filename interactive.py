#!/usr/bin/env python3

import argparse
from flow_analyzer import DataLoadError, JourneyFlowAnalyzer
from flow_config import DEFAULT_CONFIG
from visualizer import JourneyVisualizer


class InteractiveJourneyAnalyzer:
    def __init__(self, data_source, config=DEFAULT_CONFIG, show_progress: bool = True):
        self.show_progress = show_progress

        if show_progress:
            print("Initializing analyzer...")
        self.analyzer = JourneyFlowAnalyzer(config=config, show_progress=show_progress)

        if show_progress:
            print("Loading data...")
        self.analyzer.load_data(data_source)
        if show_progress:
            print("Data loaded successfully!")

        self.visualizer = JourneyVisualizer(self.analyzer)

    def show_help(self):
        print("""
Available commands:
  filter <text>          - Only keep clients whose id contains <text> (case-insensitive)
  clear                  - Remove the client filter
  stats                  - Show session counters and flow statistics
  summary                - Show sessions per client and step
  paths [n]              - Show the n most common journeys (default 5)
  drops                  - Show where sessions drop off
  sankey [file]          - Write the Sankey diagram (default sankey_diagram.html)
  heatmap [file]         - Write the transition heatmap (default heatmap.html)
  help                   - Show this help message
  exit                   - Exit the interactive session

Examples:
  filter acme
  paths 10
  sankey output/acme.html
        """)

    def handle_filter(self, text: str):
        self.analyzer.set_client_filter(text)
        metrics = self.analyzer.metrics
        if text:
            print(f"Filter '{text}': {metrics['total']} sessions")
        else:
            print(f"Filter cleared: {metrics['total']} sessions")

    def handle_stats(self):
        stats = self.analyzer.get_statistics()
        print(f"\nTotal Sessions: {stats['total_sessions']}")
        print(f"Completed Orders: {stats['completed_sessions']}")
        print(f"Dropped Sessions: {stats['dropped_sessions']}")
        print(f"Completion Rate: {stats['completion_rate']:.2f}%")
        print(f"Average Path Length: {stats['average_path_length']}")
        print("\nMost Visited Steps:")
        for step, count in stats['most_visited_steps'][:5]:
            print(f"  - {step}: {count} sessions")

    def handle_summary(self):
        table = self.analyzer.summary_dataframe()
        if table.empty:
            print("No sessions loaded")
            return
        print(table.to_string())

    def handle_paths(self, top_n: int = 5):
        paths = self.analyzer.get_most_common_paths(top_n=top_n)
        if not paths:
            print("No journeys found")
            return

        print(f"\nTop {len(paths)} journeys:")
        for i, (path, count) in enumerate(paths, 1):
            print(f"{i}. {' -> '.join(path)} (Count: {count})")

    def handle_drops(self):
        drops = self.analyzer.get_drop_off_points()
        if not drops:
            print("No drop-offs")
            return
        for label, count in drops:
            print(f"  - {label}: {count} sessions")

    def execute(self, user_input: str) -> bool:
        """Run one command. Returns False when the session should end."""
        parts = user_input.split()
        if not parts:
            return True
        command = parts[0].lower()

        if command == 'exit':
            print("Goodbye!")
            return False
        elif command == 'help':
            self.show_help()
        elif command == 'filter':
            self.handle_filter(user_input.strip()[len(parts[0]):].strip())
        elif command == 'clear':
            self.handle_filter("")
        elif command == 'stats':
            self.handle_stats()
        elif command == 'summary':
            self.handle_summary()
        elif command == 'paths':
            top_n = int(parts[1]) if len(parts) > 1 and parts[1].isdigit() else 5
            self.handle_paths(top_n)
        elif command == 'drops':
            self.handle_drops()
        elif command == 'sankey':
            self.visualizer.create_interactive_sankey(parts[1] if len(parts) > 1 else "sankey_diagram.html")
        elif command == 'heatmap':
            self.visualizer.create_heatmap(parts[1] if len(parts) > 1 else "heatmap.html")
        else:
            print(f"Unknown command: {command}. Type 'help' for available commands.")
        return True

    def run(self):
        print("Interactive Journey Analyzer - Type 'help' for commands, 'exit' to quit")

        while True:
            try:
                user_input = input("\n> ").strip()
                if not self.execute(user_input):
                    break
            except (KeyboardInterrupt, EOFError):
                print("\nGoodbye!")
                break
            except (ValueError, OSError) as e:
                print(f"Error: {e}")


def main():
    parser = argparse.ArgumentParser(description='Interactive customer journey analysis')
    parser.add_argument('--data', type=str, required=True,
                      help='Data source (file path or URL)')
    parser.add_argument('--no-progress', action='store_true',
                      help='Disable progress bars and verbose loading messages')
    parser.add_argument('--quiet', '-q', action='store_true',
                      help='Minimal output, disable all progress indicators')

    args = parser.parse_args()

    show_progress = not args.no_progress and not args.quiet

    try:
        analyzer = InteractiveJourneyAnalyzer(args.data, show_progress=show_progress)
    except DataLoadError as e:
        print(f"Error: {e}")
        return
    analyzer.run()


if __name__ == "__main__":
    main()
