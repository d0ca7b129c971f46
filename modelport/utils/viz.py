import plotly.express as px
import pandas as pd

def export_timeline(timeline, path: str):
    if not timeline:
        with open(path, "w") as f:
            f.write("<h1>Inference Timeline</h1><p>No data to display.</p>")
        return

    df = pd.DataFrame(timeline)
    # Ensure numeric types for time columns, coercing errors
    df['start'] = pd.to_numeric(df['start'], errors='coerce')
    df['end']   = pd.to_numeric(df['end'], errors='coerce')
    df = df.dropna(subset=['start', 'end'])

    df['duration'] = df['end'] - df['start']
    # Ensure a minimum duration for visibility
    df.loc[df['duration'] <= 0, 'duration'] = 1

    hover_data_cols = ['op', 'start', 'end', 'duration', 'shapes']
    existing_hover_cols = [c for c in hover_data_cols if c in df.columns]

    fig = px.bar(
        df,
        x="duration",
        y="name",
        base="start",
        orientation="h",
        color="op",
        hover_name="name",
        hover_data=existing_hover_cols,
        title="Inference Timeline (per node)",
        labels={"name": "Node", "op": "Operator", "duration": "Time (us)"}
    )

    fig.update_yaxes(autorange="reversed", title="Node")
    fig.update_xaxes(title="Time (us)")
    fig.update_layout(
        height=max(500, len(df['name'].unique()) * 25),
        font=dict(family="Courier New, monospace", size=12),
        legend_title="Operator"
    )

    fig.write_html(path, include_plotlyjs="cdn", full_html=True)

def export_timeline_ascii(timeline, width: int = 80):
    if not timeline:
        return "Timeline is empty."

    max_time = max((item['end'] for item in timeline), default=0)
    if max_time <= 0:
        return "Timeline has no duration."

    scale = width / max_time
    label_width = max(8, max(len(item['name']) for item in timeline))

    chart = "Inference Timeline (ASCII)\n"
    chart += ("-" * (width + label_width + 2)) + "\n"

    for item in timeline:
        lane = ['-'] * width
        start_pos = int(item['start'] * scale)
        end_pos = max(start_pos + 1, int(item['end'] * scale))
        op_char = item.get('op', '?')[0]
        for i in range(start_pos, min(end_pos, width)):
            lane[i] = op_char
        chart += f"{item['name']:>{label_width}} |" + "".join(lane) + "\n"

    chart += ("-" * (width + label_width + 2)) + "\n"
    chart += f"0 us{' ' * (width + label_width - 12)}{max_time:.1f} us\n"

    return chart
