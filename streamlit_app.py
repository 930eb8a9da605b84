# streamlit_app.py
import io

import plotly.express as px
import polars as pl
import streamlit as st

from weblog.agg import USER_AGENT, analyze, frame_from_records
from weblog.config import AnalysisConfig
from weblog.errors import ConfigError
from weblog.export import REPORT_FILES, render
from weblog.parse import ParseStats, read_records
from weblog.ua import ua_family

st.set_page_config(page_title="Access log analytics", layout="wide")

st.title(" Access log analytics")

uploaded = st.file_uploader(
    "Upload an access log (ip,timestamp,url,status,user_agent)", type=["csv", "log", "txt"]
)

with st.sidebar:
    st.header("Settings")
    top_n = st.number_input("Top N", min_value=0, value=3, step=1)
    threshold = st.number_input("Suspicious IP threshold", min_value=0, value=3, step=1)
    statuses = st.multiselect(
        "Failure statuses", [400, 401, 403, 404, 429, 500, 502, 503], default=[404, 500]
    )
    precision = st.slider("Trend bucket precision", min_value=1, max_value=19, value=16)
    skip_header = st.checkbox("First line is a header", value=True)
    by_family = st.checkbox("Group user agents by browser family", value=False)


if uploaded:
    try:
        config = AnalysisConfig(
            top_n=int(top_n),
            suspicious_statuses=tuple(statuses),
            threshold=int(threshold),
            bucket_precision=int(precision),
            skip_header=skip_header,
        )
    except ConfigError as exc:
        st.error(str(exc))
        st.stop()

    stats = ParseStats()
    items = read_records(io.BytesIO(uploaded.read()), skip_header=config.skip_header)
    df = frame_from_records(items, stats).collect()
    agent_key = ua_family() if by_family else USER_AGENT
    report = analyze(df, config, agent_key=agent_key)

    # Overview KPIs
    st.subheader("Overview")
    cols = st.columns(3)
    cols[0].metric("Total Requests", f"{report.total_requests.value:,}")
    cols[1].metric("Distinct IPs", f"{df['ip'].n_unique():,}")
    cols[2].metric("Malformed Lines", f"{stats.failed:,}")

    # Status Code Distribution (horizontal bar)
    st.subheader("Status Code Distribution")
    dist = pl.DataFrame(
        report.status_codes.rows(), schema=["status", "count"], orient="row"
    ).with_columns(pl.col("status").cast(pl.Utf8))
    if dist.height:
        fig = px.bar(dist.to_pandas(), y="status", x="count", orientation="h")
        st.plotly_chart(fig, use_container_width=True)

    left, right = st.columns(2)
    with left:
        st.subheader("Most visited URLs")
        st.dataframe(
            pl.DataFrame(report.most_visited.rows(), schema=["url", "hits"], orient="row").to_pandas()
        )
    with right:
        st.subheader("Top user agents")
        st.dataframe(
            pl.DataFrame(
                report.top_user_agents.rows(), schema=["user_agent", "hits"], orient="row"
            ).to_pandas()
        )

    st.subheader("Suspicious IPs")
    st.dataframe(
        pl.DataFrame(report.suspicious_ips.rows(), schema=["ip", "failures"], orient="row").to_pandas()
    )

    st.subheader("Traffic over time")
    times = pl.DataFrame(report.time_trend.rows(), schema=["bucket", "hits"], orient="row")
    if times.height:
        fig2 = px.area(times.to_pandas(), x="bucket", y="hits")
        st.plotly_chart(fig2, use_container_width=True)
    st.dataframe(times.rename({"bucket": "Bucket", "hits": "Visits"}).to_pandas())

    st.subheader("Downloads")
    for name, result in report:
        st.download_button(
            REPORT_FILES[name], render(result), file_name=REPORT_FILES[name], key=name
        )
else:
    st.info("Please upload a log file to begin.")
