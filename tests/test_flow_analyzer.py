import io
import json

import pandas as pd
import pytest

import flow_analyzer
from flow_analyzer import (
    DataLoadError,
    JourneyFlowAnalyzer,
    aggregate_flows,
    build_client_event_summary,
    compute_graph,
    read_rows,
    summary_to_dataframe,
)
from flow_config import DEFAULT_CONFIG
from tests.conftest import make_row


def test_stalled_session_gets_a_drop_transition(stalled_rows):
    result = compute_graph(stalled_rows)

    assert result['sessions']['S1']['events'] == ["CreateSession", "ValidateAddress"]
    assert result['aggregation']['link_counts'] == {
        ("C1", "CreateSession"): 1,
        ("CreateSession", "ValidateAddress"): 1,
        ("ValidateAddress", "Dropped @ ValidateAddress"): 1,
    }
    assert result['metrics'] == {'total': 1, 'completed': 0, 'dropped': 1}


def test_completed_sessions_flow_into_terminal_step(completed_rows):
    result = compute_graph(completed_rows)

    assert result['metrics'] == {'total': 2, 'completed': 2, 'dropped': 0}
    assert result['aggregation']['link_counts'][("CreateSession", "SubmitOrder")] == 2

    graph = result['graph']
    labels = [node['label'] for node in graph['nodes']]
    terminal_links = [link for link in graph['links']
                      if link['target'] == labels.index("SubmitOrder")]
    assert len(terminal_links) == 1
    assert terminal_links[0]['value'] == 2
    assert terminal_links[0]['percentage'] == 100.0


def test_noise_rows_never_reach_the_graph():
    rows = [make_row("C1", "S1", "SAVESMARTCART|SUCCESS")]
    result = compute_graph(rows)

    assert result['graph'] is None
    assert result['sessions'] == {}
    assert result['metrics'] == {'total': 0, 'completed': 0, 'dropped': 0}


def test_outbound_totals_match_path_appearances(sample_rows):
    result = compute_graph(sample_rows)
    aggregation = result['aggregation']

    expected = {}
    for session in result['sessions'].values():
        path = [session['client']] + session['events']
        if path[-1] != DEFAULT_CONFIG.terminal_step:
            path.append(DEFAULT_CONFIG.drop_label(path[-1]))
        for label in path[:-1]:
            expected[label] = expected.get(label, 0) + 1

    assert aggregation['out_totals'] == expected
    for label, total in aggregation['out_totals'].items():
        outgoing = sum(count for (source, _), count in aggregation['link_counts'].items()
                       if source == label)
        assert outgoing == total


def test_completed_plus_dropped_is_total(sample_rows):
    metrics = compute_graph(sample_rows)['metrics']
    assert metrics == {'total': 4, 'completed': 2, 'dropped': 2}


def test_pipeline_is_deterministic(sample_rows):
    first = compute_graph(sample_rows)
    second = compute_graph(sample_rows)

    assert first['graph'] == second['graph']
    assert first['aggregation'] == second['aggregation']
    assert first['metrics'] == second['metrics']


def test_filter_without_matches_gives_empty_result(sample_rows):
    result = compute_graph(sample_rows, client_filter="nobody")

    assert result['graph'] is None
    assert result['metrics'] == {'total': 0, 'completed': 0, 'dropped': 0}
    assert result['summary'] == {}


def test_filter_is_case_insensitive(sample_rows):
    result = compute_graph(sample_rows, client_filter="c2")
    assert set(result['sessions']) == {"S2", "S3"}
    assert result['metrics']['completed'] == 2


def test_zero_event_session_drops_from_client():
    sessions = {"S1": {'session_id': "S1", 'client': "C9", 'events': []}}
    aggregation = aggregate_flows(sessions)

    assert aggregation['link_counts'] == {("C9", "Dropped @ C9"): 1}
    assert aggregation['entry_counts'] == {"Dropped @ C9": 1}


def test_self_transitions_are_skipped():
    sessions = {"S1": {'session_id': "S1", 'client': "C1",
                       'events': ["CreateSession", "CreateSession"]}}
    link_counts = aggregate_flows(sessions)['link_counts']

    assert ("CreateSession", "CreateSession") not in link_counts
    assert link_counts == {
        ("C1", "CreateSession"): 1,
        ("CreateSession", "Dropped @ CreateSession"): 1,
    }


def test_client_event_summary_counts_each_step_once_per_session():
    sessions = {
        "S1": {'session_id': "S1", 'client': "C1", 'events': ["CreateSession", "ValidateAddress"]},
        "S2": {'session_id': "S2", 'client': "C1", 'events': ["CreateSession", "Foo", "Bar", "Foo"]},
        "S3": {'session_id': "S3", 'client': "C2", 'events': ["CreateSession", "SubmitOrder"]},
    }
    summary = build_client_event_summary(sessions)

    assert summary["C1"] == {
        "CreateSession": 2,
        "ValidateAddress": 1,
        "Dropped @ ValidateAddress": 1,
        "Foo": 1,
        "Bar": 1,
        "Dropped @ Foo": 1,
    }
    assert summary["C2"] == {"CreateSession": 1, "SubmitOrder": 1}

    table = summary_to_dataframe(summary)
    assert list(table.columns) == list(DEFAULT_CONFIG.event_order) + \
        ["Dropped @ ValidateAddress", "Dropped @ Foo"]
    assert table.loc["C1", "CreateSession"] == 2
    assert table.loc["C2", "Dropped @ Foo"] == 0
    assert table.index.name == 'Client'


def test_analyzer_recomputes_on_filter_change(sample_rows):
    analyzer = JourneyFlowAnalyzer(show_progress=False)
    analyzer.load_data(sample_rows)
    assert analyzer.metrics['total'] == 4

    analyzer.set_client_filter("C3")
    assert analyzer.metrics == {'total': 1, 'completed': 0, 'dropped': 1}

    analyzer.set_client_filter("")
    assert analyzer.metrics['total'] == 4


def test_statistics(sample_rows):
    analyzer = JourneyFlowAnalyzer(show_progress=False)
    analyzer.load_data(sample_rows)
    stats = analyzer.get_statistics()

    assert stats['total_sessions'] == 4
    assert stats['completion_rate'] == 50.0
    assert stats['most_visited_steps'][0] == ("CreateSession", 4)
    # S1: 2 steps, S2: 6, S3: 4, S4: 2
    assert stats['average_path_length'] == 3.5
    assert stats['total_transitions'] == sum(analyzer.link_counts.values())


def test_most_common_paths_and_drop_points():
    rows = [
        make_row("C1", "S1", "CreateSession"),
        make_row("C1", "S2", "CreateSession"),
        make_row("C1", "S3", "CreateSession"),
        make_row("C1", "S3", "SubmitOrder"),
    ]
    analyzer = JourneyFlowAnalyzer(show_progress=False)
    analyzer.load_data(rows)

    assert analyzer.get_most_common_paths(top_n=1) == \
        [(["CreateSession", "Dropped @ CreateSession"], 2)]
    assert analyzer.get_drop_off_points() == [("Dropped @ CreateSession", 2)]


def test_transition_matrices(sample_rows):
    analyzer = JourneyFlowAnalyzer(show_progress=False)
    analyzer.load_data(sample_rows)

    counts = analyzer.export_transition_matrix()
    assert counts.loc["C2", "CreateSession"] == 2

    probabilities = analyzer.export_transition_probability_matrix()
    row_sums = probabilities.sum(axis=1)
    for label in analyzer.result['aggregation']['out_totals']:
        assert row_sums[label] == pytest.approx(1.0)
    assert row_sums["SubmitOrder"] == 0


def test_load_csv_file(tmp_path, sample_rows):
    path = tmp_path / "events.csv"
    pd.DataFrame(sample_rows).to_csv(path, index=False)

    analyzer = JourneyFlowAnalyzer(show_progress=False)
    analyzer.load_data(str(path))

    assert len(analyzer.rows) == len(sample_rows)
    assert analyzer.metrics['total'] == 4


def test_load_excel_bytes(sample_rows):
    buffer = io.BytesIO()
    pd.DataFrame(sample_rows).to_excel(buffer, index=False)

    analyzer = JourneyFlowAnalyzer(show_progress=False)
    analyzer.load_data(buffer.getvalue(), file_name="upload.xlsx")

    assert analyzer.metrics == {'total': 4, 'completed': 2, 'dropped': 2}


def test_excel_empty_cells_read_as_blank(tmp_path):
    path = tmp_path / "events.xlsx"
    pd.DataFrame([
        {"strClientId": "C1", "strSessionId": "S1", "MethodName": "CreateSession"},
        {"strClientId": None, "strSessionId": "S2", "MethodName": "CreateSession"},
    ]).to_excel(path, index=False)

    rows = read_rows(str(path), str(path))
    assert rows[1]["strClientId"] == ""


def test_load_json_file(tmp_path, stalled_rows):
    path = tmp_path / "events.json"
    path.write_text(json.dumps(stalled_rows))

    analyzer = JourneyFlowAnalyzer(show_progress=False)
    analyzer.load_data(str(path))
    assert analyzer.metrics['dropped'] == 1


def test_decode_failure_clears_previous_output(sample_rows):
    analyzer = JourneyFlowAnalyzer(show_progress=False)
    analyzer.load_data(sample_rows)

    with pytest.raises(DataLoadError):
        analyzer.load_data(b"definitely not a workbook", file_name="broken.xlsx")

    assert analyzer.rows == []
    assert analyzer.graph is None
    assert analyzer.metrics['total'] == 0
    assert analyzer.error


@pytest.mark.parametrize("file_name, payload", [
    ("events.txt", b"hello"),
    ("events.json", b'{"not": "a list"}'),
    ("events.json", b"{broken"),
])
def test_unreadable_sources(file_name, payload):
    with pytest.raises(DataLoadError):
        read_rows(io.BytesIO(payload), file_name)


def test_unsupported_source_type():
    analyzer = JourneyFlowAnalyzer(show_progress=False)
    with pytest.raises(ValueError):
        analyzer.load_data(42)


def test_load_from_url(monkeypatch, completed_rows):
    csv_bytes = pd.DataFrame(completed_rows).to_csv(index=False).encode()

    class FakeResponse:
        content = csv_bytes

        def raise_for_status(self):
            pass

    requested = []

    def fake_get(url, timeout=None):
        requested.append(url)
        return FakeResponse()

    monkeypatch.setattr(flow_analyzer.requests, "get", fake_get)

    analyzer = JourneyFlowAnalyzer(show_progress=False)
    analyzer.load_data("https://example.com/export/events.csv?token=abc")

    assert requested == ["https://example.com/export/events.csv?token=abc"]
    assert analyzer.metrics['completed'] == 2


def test_progress_callback_replaces_printing(capsys, stalled_rows):
    messages = []
    analyzer = JourneyFlowAnalyzer(show_progress=False)
    analyzer.load_data(stalled_rows, progress_callback=lambda msg, pct: messages.append((msg, pct)))

    assert messages[0] == ("Starting data load...", 0.0)
    assert messages[-1] == ("Processing complete!", 100.0)
    assert capsys.readouterr().out == ""


def test_preset_filter_applies_on_load_in_one_pass(monkeypatch, sample_rows):
    calls = []
    original = flow_analyzer.compute_graph

    def counting_compute_graph(*args, **kwargs):
        calls.append(args[1])
        return original(*args, **kwargs)

    monkeypatch.setattr(flow_analyzer, "compute_graph", counting_compute_graph)

    analyzer = JourneyFlowAnalyzer(show_progress=False)
    analyzer.client_filter = "C3"
    analyzer.load_data(sample_rows)

    assert calls == ["C3"]
    assert analyzer.metrics == {'total': 1, 'completed': 0, 'dropped': 1}


def test_progress_bars_leave_result_unchanged(capsys, sample_rows):
    quiet = compute_graph(sample_rows)
    loud = compute_graph(sample_rows, show_progress=True)

    assert loud['graph'] == quiet['graph']
    assert loud['metrics'] == quiet['metrics']
    err = capsys.readouterr().err
    assert "Processing events" in err
    assert "Building sessions" in err
