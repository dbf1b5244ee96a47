"""
Configuration tables for the order journey flow.

A FlowConfig bundles the canonical step vocabulary, the event name aliases,
the column layout and the palette used when the Sankey is materialized.
Pipeline functions take the config explicitly so alternate vocabularies can
be plugged in without touching module state.
"""

from types import MappingProxyType
from typing import Dict, Iterable, Optional


EVENT_ORDER = (
    "CreateSession",
    "ValidateAddress",
    "GetQualifiedProducts",
    "CreateOrder",
    "SaveOrderProducts",
    "EstimateFirstBill",
    "GetDueDates",
    "SetDueDates",
    "CreditCheck",
    "SubmitOrder",
)

EVENT_ALIASES = {
    "saveorderedproducts": "SaveOrderProducts",
    "submitorder": "SubmitOrder",
    "setduedates": "SetDueDates",
    "setduedate": "SetDueDates",
}

COLUMN_X = {
    "CLIENT": 0.02,
    "CreateSession": 0.25,
    "ValidateAddress": 0.40,
    "GetQualifiedProducts": 0.60,
    "CreateOrder": 0.72,
    "SaveOrderProducts": 0.80,
    "EstimateFirstBill": 0.85,
    "GetDueDates": 0.90,
    "SetDueDates": 0.94,
    "CreditCheck": 0.97,
    "SubmitOrder": 0.995,
    "DROP": 1.0,
}

NODE_PALETTE = {
    "DEFAULT": "#475569",
    "CLIENT": "#7c3aed",
    "CreateSession": "#2563eb",
    "ValidateAddress": "#0284c7",
    "GetQualifiedProducts": "#0891b2",
    "CreateOrder": "#059669",
    "SaveOrderProducts": "#16a34a",
    "EstimateFirstBill": "#65a30d",
    "GetDueDates": "#ca8a04",
    "SetDueDates": "#ea580c",
    "CreditCheck": "#eab308",
    "Dropped @ CreateOrder": "#FBCEB1",
    "SubmitOrder": "#15803d",
    "DROP": "#64748b",
}

SUCCESS_COLOR = "#15803d"

# Raw event names carrying both markers are noise and never reach a session.
NOISE_MARKERS = ("SAVESMARTCART", "SUCCESS")


def rgba(hex_color: str, alpha: float = 0.7) -> str:
    """Convert '#rrggbb' to a plotly rgba() string."""
    r = int(hex_color[1:3], 16)
    g = int(hex_color[3:5], 16)
    b = int(hex_color[5:7], 16)
    return f"rgba({r},{g},{b},{alpha})"


class FlowConfig:
    def __init__(self,
                 event_order: Iterable[str] = EVENT_ORDER,
                 aliases: Optional[Dict[str, str]] = None,
                 column_x: Optional[Dict[str, float]] = None,
                 palette: Optional[Dict[str, str]] = None,
                 client_column: str = "strClientId",
                 session_column: str = "strSessionId",
                 event_column: str = "MethodName",
                 noise_markers: Iterable[str] = NOISE_MARKERS,
                 drop_prefix: str = "Dropped @ ",
                 success_color: str = SUCCESS_COLOR):
        self.event_order = tuple(event_order)
        if not self.event_order:
            raise ValueError("event_order must contain at least the terminal step")

        column_x = dict(COLUMN_X if column_x is None else column_x)
        column_x.setdefault("CLIENT", COLUMN_X["CLIENT"])
        column_x.setdefault("DROP", COLUMN_X["DROP"])
        palette = dict(NODE_PALETTE if palette is None else palette)
        palette.setdefault("DEFAULT", NODE_PALETTE["DEFAULT"])
        palette.setdefault("DROP", NODE_PALETTE["DROP"])

        self.aliases = MappingProxyType({k.lower(): v for k, v in (EVENT_ALIASES if aliases is None else aliases).items()})
        self.column_x = MappingProxyType(column_x)
        self.palette = MappingProxyType(palette)
        self.client_column = client_column
        self.session_column = session_column
        self.event_column = event_column
        self.noise_markers = tuple(noise_markers)
        self.drop_prefix = drop_prefix
        self.success_color = success_color

        self.terminal_step = self.event_order[-1]
        self.step_rank = MappingProxyType({step: i for i, step in enumerate(self.event_order)})
        # Unknown labels sort after every known step
        self.unknown_rank = len(self.event_order)

    def rank(self, label: str) -> int:
        return self.step_rank.get(label, self.unknown_rank)

    def is_step(self, label: str) -> bool:
        return label in self.step_rank

    def drop_label(self, label: str) -> str:
        return f"{self.drop_prefix}{label}"

    def is_drop(self, label: str) -> bool:
        return label.startswith(self.drop_prefix)

    def with_columns(self, client_column: Optional[str] = None,
                     session_column: Optional[str] = None,
                     event_column: Optional[str] = None) -> "FlowConfig":
        """Return a copy reading the given source columns."""
        return FlowConfig(
            event_order=self.event_order,
            aliases=dict(self.aliases),
            column_x=dict(self.column_x),
            palette=dict(self.palette),
            client_column=client_column or self.client_column,
            session_column=session_column or self.session_column,
            event_column=event_column or self.event_column,
            noise_markers=self.noise_markers,
            drop_prefix=self.drop_prefix,
            success_color=self.success_color,
        )

    def __repr__(self):
        return (f"FlowConfig(steps={len(self.event_order)}, terminal={self.terminal_step!r}, "
                f"columns=({self.client_column!r}, {self.session_column!r}, {self.event_column!r}))")


DEFAULT_CONFIG = FlowConfig()
