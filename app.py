import io

import streamlit as st

from flow_analyzer import DataLoadError, JourneyFlowAnalyzer, read_rows
from visualizer import JourneyVisualizer


st.set_page_config(page_title="Customer Journey Analytics", layout="wide")


@st.cache_data(show_spinner=True)
def _decode_upload(file_bytes: bytes, file_name: str):
    return read_rows(io.BytesIO(file_bytes), file_name)


st.title("Customer Journey Analytics")
st.write("Interactive Sankey Diagram Visualization of User Flow Patterns")

left, right = st.columns([2, 1])
uploaded = left.file_uploader("Upload Excel File", type=["xls", "xlsx", "csv"])
client_filter = right.text_input("Filter", placeholder="Search Client ID...")

if uploaded is None:
    st.info("Upload your Excel file to generate the interactive Sankey diagram")
    st.stop()

analyzer = JourneyFlowAnalyzer(show_progress=False)
analyzer.client_filter = client_filter
try:
    rows = _decode_upload(uploaded.getvalue(), uploaded.name)
except DataLoadError as e:
    st.error(f"Error reading Excel file. {e}")
    st.stop()

analyzer.load_data(rows)
left.success(f"{len(rows):,} records loaded")

visualizer = JourneyVisualizer(analyzer)
fig = visualizer.build_sankey_figure()
if fig is None:
    st.warning("No sessions match the current data and filter.")
    st.stop()

st.plotly_chart(fig, use_container_width=True)

metrics = analyzer.metrics
total_col, completed_col, dropped_col = st.columns(3)
total_col.metric("Total Sessions", f"{metrics['total']:,}")
completed_col.metric("Completed Orders", f"{metrics['completed']:,}")
dropped_col.metric("Dropped Sessions", f"{metrics['dropped']:,}")

st.subheader("Session Summary by Client & Event")
summary = analyzer.summary_dataframe()
st.dataframe(summary, use_container_width=True)
st.download_button(
    "Download summary CSV",
    summary.to_csv().encode("utf-8"),
    file_name="client_event_summary.csv",
    mime="text/csv",
)
