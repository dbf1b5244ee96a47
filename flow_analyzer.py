import io
import json
import os
import pandas as pd
import numpy as np
from collections import defaultdict, Counter
from typing import List, Dict, Tuple, Optional, Callable, Mapping
import requests
from tqdm import tqdm

from flow_config import DEFAULT_CONFIG, FlowConfig
from sankey_unified import create_unified_sankey_data
from session_builder import (
    build_sessions,
    canonicalize_sessions,
    filter_rows_by_client,
    is_completed,
    session_path,
)


EXCEL_EXTENSIONS = ('.xlsx', '.xls', '.xlsm')


class DataLoadError(ValueError):
    """The data source could not be decoded into rows."""


def aggregate_flows(sessions: Dict[str, Dict], config: FlowConfig = DEFAULT_CONFIG) -> Dict:
    """Collapse finalized sessions into transition counts.

    Each session is walked as client -> step1 -> ... -> stepN. Sessions that
    do not end on the terminal step get one extra transition into a drop node
    named after the step they stalled at.
    """
    link_counts = defaultdict(int)  # (source, target) -> sessions
    out_totals = defaultdict(int)
    entry_counts = defaultdict(int)

    def count(source: str, target: str):
        link_counts[(source, target)] += 1
        out_totals[source] += 1
        entry_counts[target] += 1

    for session in sessions.values():
        path = session_path(session)
        for i in range(len(path) - 1):
            source = path[i]
            target = path[i + 1]
            if source == target:
                continue
            count(source, target)

        last = path[-1]
        if last != config.terminal_step:
            count(last, config.drop_label(last))

    return {
        'link_counts': dict(link_counts),
        'out_totals': dict(out_totals),
        'entry_counts': dict(entry_counts),
        'clients': sorted({session['client'] for session in sessions.values()}),
        'total_sessions': len(sessions)
    }


def compute_metrics(sessions: Dict[str, Dict], config: FlowConfig = DEFAULT_CONFIG) -> Dict[str, int]:
    total = len(sessions)
    completed = sum(1 for session in sessions.values() if is_completed(session, config))
    return {
        'total': total,
        'completed': completed,
        'dropped': total - completed
    }


def build_client_event_summary(sessions: Dict[str, Dict],
                               config: FlowConfig = DEFAULT_CONFIG) -> Dict[str, Dict[str, int]]:
    """Count, per client, how many sessions visited each step.

    A step counts once per session. Sessions that never complete also count
    towards the drop label of their last step.
    """
    summary = {}
    for session in sessions.values():
        client_counts = summary.setdefault(session['client'], {})

        visited = list(dict.fromkeys(session['events']))
        if not is_completed(session, config):
            visited.append(config.drop_label(session_path(session)[-1]))

        for label in visited:
            client_counts[label] = client_counts.get(label, 0) + 1

    return summary


def summary_to_dataframe(summary: Dict[str, Dict[str, int]],
                         config: FlowConfig = DEFAULT_CONFIG) -> pd.DataFrame:
    """Tabulate the client summary: vocabulary columns, then drop columns."""
    drop_columns = []
    for counts in summary.values():
        for label in counts:
            if config.is_drop(label) and label not in drop_columns:
                drop_columns.append(label)
    columns = list(config.event_order) + drop_columns

    table = pd.DataFrame(0, index=list(summary.keys()), columns=columns)
    table.index.name = 'Client'
    for client, counts in summary.items():
        for label, value in counts.items():
            if label in table.columns:
                table.loc[client, label] = value
    return table


def empty_result() -> Dict:
    return {
        'sessions': {},
        'aggregation': aggregate_flows({}),
        'graph': None,
        'metrics': {'total': 0, 'completed': 0, 'dropped': 0},
        'summary': {}
    }


def compute_graph(rows: List[Mapping], client_filter: Optional[str] = "",
                  config: FlowConfig = DEFAULT_CONFIG, show_progress: bool = False) -> Dict:
    """Run the whole pipeline: filter, build, canonicalize, aggregate, materialize.

    Always returns a complete result. With no usable rows the graph is None
    and every counter is zero.
    """
    filtered = filter_rows_by_client(rows, client_filter, config)
    if not filtered:
        return empty_result()

    rows_iterator = tqdm(filtered, desc="Processing events", disable=not show_progress)
    sessions = canonicalize_sessions(build_sessions(rows_iterator, config), config,
                                     show_progress=show_progress)
    if not sessions:
        return empty_result()

    aggregation = aggregate_flows(sessions, config)
    return {
        'sessions': sessions,
        'aggregation': aggregation,
        'graph': create_unified_sankey_data(aggregation, config),
        'metrics': compute_metrics(sessions, config),
        'summary': build_client_event_summary(sessions, config)
    }


def _records(df: pd.DataFrame) -> List[Dict]:
    return df.fillna("").to_dict('records')


def read_rows(source, file_name: str) -> List[Dict]:
    """Decode a spreadsheet, CSV or JSON source into row dicts.

    source is a path or a binary buffer; file_name picks the decoder.
    Every cell is read as text and empty cells come back as ''.
    """
    lowered = file_name.lower()
    try:
        if lowered.endswith(EXCEL_EXTENSIONS):
            df = pd.read_excel(source, sheet_name=0, dtype=str, keep_default_na=False)
            return _records(df)
        if lowered.endswith('.csv'):
            df = pd.read_csv(source, dtype=str, keep_default_na=False)
            return _records(df)
        if lowered.endswith('.json'):
            if isinstance(source, (str, os.PathLike)):
                with open(source, 'r') as f:
                    data = json.load(f)
            else:
                data = json.load(source)
            if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
                raise DataLoadError("JSON data must be a list of row objects.")
            return data
    except DataLoadError:
        raise
    except Exception as e:
        raise DataLoadError(f"Error reading file '{file_name}': {e}") from e

    raise DataLoadError("Unsupported file format. Use Excel (.xlsx/.xls), CSV or JSON.")


class JourneyFlowAnalyzer:
    def __init__(self, config: FlowConfig = DEFAULT_CONFIG, show_progress: bool = True):
        self.config = config
        self.show_progress = show_progress
        self.rows = []
        self.client_filter = ""
        self.error = None
        self.result = empty_result()

    def _report(self, message: str, percentage: float,
                progress_callback: Optional[Callable[[str, float], None]]):
        if progress_callback:
            progress_callback(message, percentage)
        elif self.show_progress:
            print(message)

    def load_data(self, data_source, file_name: Optional[str] = None,
                  progress_callback: Optional[Callable[[str, float], None]] = None):
        """Load rows and rebuild the flow.

        Args:
            data_source: File path, URL, raw bytes / binary buffer (with
                file_name), DataFrame or list of row dicts
            file_name: Name used to choose a decoder for byte sources
            progress_callback: Optional callback function(message, percentage)

        Raises:
            DataLoadError: the source could not be decoded. Previously loaded
                rows and results are cleared.
        """
        self._report("Starting data load...", 0.0, progress_callback)

        try:
            rows = self._read_source(data_source, file_name, progress_callback)
        except DataLoadError as e:
            self.rows = []
            self.result = empty_result()
            self.error = str(e)
            raise

        self.error = None
        self.rows = rows
        self._report(f"Data loaded ({len(rows)} records), processing...", 30.0, progress_callback)
        self.recompute()
        self._report("Processing complete!", 100.0, progress_callback)

    def _read_source(self, data_source, file_name, progress_callback) -> List[Dict]:
        if isinstance(data_source, pd.DataFrame):
            return _records(data_source)
        if isinstance(data_source, list):
            return data_source
        if isinstance(data_source, (bytes, bytearray)):
            data_source = io.BytesIO(data_source)
        if hasattr(data_source, 'read'):
            if not file_name:
                file_name = getattr(data_source, 'name', None)
            if not file_name:
                raise ValueError("file_name is required when loading from bytes")
            return read_rows(data_source, file_name)
        if isinstance(data_source, (str, os.PathLike)):
            data_source = str(data_source)
            if data_source.startswith('http://') or data_source.startswith('https://'):
                self._report("Downloading from server...", 10.0, progress_callback)
                try:
                    response = requests.get(data_source, timeout=60)
                    response.raise_for_status()
                except requests.RequestException as e:
                    raise DataLoadError(f"Error downloading '{data_source}': {e}") from e
                name = file_name or data_source.split('?')[0]
                return read_rows(io.BytesIO(response.content), name)

            self._report(f"Reading {os.path.basename(data_source)}...", 10.0, progress_callback)
            return read_rows(data_source, file_name or data_source)

        raise ValueError("Data source must be a file path, URL, bytes, DataFrame or list of dictionaries")

    def set_client_filter(self, client_filter: Optional[str]):
        self.client_filter = client_filter or ""
        self.recompute()

    def recompute(self):
        self.result = compute_graph(self.rows, self.client_filter, self.config,
                                    show_progress=self.show_progress)
        return self.result

    @property
    def sessions(self) -> Dict[str, Dict]:
        return self.result['sessions']

    @property
    def graph(self) -> Optional[Dict]:
        return self.result['graph']

    @property
    def metrics(self) -> Dict[str, int]:
        return self.result['metrics']

    @property
    def link_counts(self) -> Dict[Tuple[str, str], int]:
        return self.result['aggregation']['link_counts']

    def summary_dataframe(self) -> pd.DataFrame:
        return summary_to_dataframe(self.result['summary'], self.config)

    def get_statistics(self) -> Dict:
        metrics = self.metrics
        sessions = list(self.sessions.values())

        avg_path_length = np.mean([len(s['events']) for s in sessions]) if sessions else 0
        completion_rate = metrics['completed'] / metrics['total'] * 100 if metrics['total'] else 0

        step_visits = Counter()
        for session in sessions:
            step_visits.update(session['events'])

        return {
            'total_sessions': metrics['total'],
            'completed_sessions': metrics['completed'],
            'dropped_sessions': metrics['dropped'],
            'completion_rate': round(completion_rate, 2),
            'unique_steps': len(step_visits),
            'average_path_length': round(float(avg_path_length), 2),
            'most_visited_steps': step_visits.most_common(10),
            'total_transitions': sum(self.link_counts.values())
        }

    def get_most_common_paths(self, top_n: int = 10) -> List[Tuple[List[str], int]]:
        """Most frequent complete journeys, drop marker included."""
        path_counts = Counter()
        for session in self.sessions.values():
            path = list(session['events'])
            if not is_completed(session, self.config):
                path.append(self.config.drop_label(session_path(session)[-1]))
            path_counts[tuple(path)] += 1

        return [(list(path), count) for path, count in path_counts.most_common(top_n)]

    def get_drop_off_points(self) -> List[Tuple[str, int]]:
        drops = [(target, count) for (_, target), count in self.link_counts.items()
                 if self.config.is_drop(target)]
        return sorted(drops, key=lambda x: x[1], reverse=True)

    def _labels(self) -> List[str]:
        labels = []
        for source, target in self.link_counts:
            for label in (source, target):
                if label not in labels:
                    labels.append(label)
        return labels

    def export_transition_matrix(self) -> pd.DataFrame:
        labels = self._labels()
        matrix = pd.DataFrame(0, index=labels, columns=labels)

        for (source, target), count in self.link_counts.items():
            matrix.loc[source, target] = count

        return matrix

    def export_transition_probability_matrix(self) -> pd.DataFrame:
        """Export transition matrix with probabilities instead of raw counts.

        For each source node, shows the share of its outbound sessions that
        moved to each target. Rows with outbound traffic sum to 1.0.
        """
        labels = self._labels()
        matrix = pd.DataFrame(0.0, index=labels, columns=labels)
        out_totals = self.result['aggregation']['out_totals']

        for (source, target), count in self.link_counts.items():
            matrix.loc[source, target] = count / out_totals[source]

        return matrix
