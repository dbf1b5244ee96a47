import pytest

from main import SAMPLE_ROWS


def make_row(client, session, event, **extra):
    row = {"strClientId": client, "strSessionId": session, "MethodName": event}
    row.update(extra)
    return row


@pytest.fixture
def sample_rows():
    return [dict(row) for row in SAMPLE_ROWS]


@pytest.fixture
def stalled_rows():
    return [
        make_row("C1", "S1", "ValidateAddress"),
        make_row("C1", "S1", "CreateSession"),
        make_row("C1", "S1", "CreateSession"),
    ]


@pytest.fixture
def completed_rows():
    return [
        make_row("C2", "S1", "CreateSession"),
        make_row("C2", "S1", "SubmitOrder"),
        make_row("C2", "S2", "SubmitOrder"),
        make_row("C2", "S2", "CreateSession"),
    ]
