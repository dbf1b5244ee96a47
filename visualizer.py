import networkx as nx
import plotly.graph_objects as go
import pandas as pd
from typing import Dict, Optional
import pydot


class JourneyVisualizer:
    def __init__(self, analyzer):
        self.analyzer = analyzer
        self.config = analyzer.config
        self.show_progress = getattr(analyzer, 'show_progress', True)

    def chart_height(self) -> int:
        graph = self.analyzer.graph
        if not graph:
            return 800
        # every label that is neither a known step nor a drop marker, unknown steps included
        rows = sum(1 for label in graph['labels']
                   if not any(label.startswith(step) for step in self.config.event_order)
                   and not self.config.is_drop(label))
        return max(800, min(1200, rows * 25 + 400))

    def _output(self, fig, output_file: Optional[str], description: str):
        if output_file:
            fig.write_html(output_file)
            if self.show_progress:
                print(f"{description} saved to {output_file}")
        else:
            fig.show()
        return fig

    def build_sankey_figure(self) -> Optional[go.Figure]:
        graph = self.analyzer.graph
        if not graph:
            return None

        links = graph['links']
        fig = go.Figure(data=[go.Sankey(
            orientation='h',
            arrangement='snap',
            valueformat='.0f',
            valuesuffix=' sessions',
            node=dict(
                pad=30,
                thickness=20,
                line=dict(color="rgba(51,65,85,0.3)", width=1),
                label=graph['labels'],
                color=graph['node_colors'],
                x=graph['x_positions'],
                y=graph['y_positions'],
                hovertemplate="<b>%{label}</b><extra></extra>"
            ),
            link=dict(
                source=[link['source'] for link in links],
                target=[link['target'] for link in links],
                value=[link['value'] for link in links],
                color=[link['color'] for link in links],
                customdata=[link['hover'] for link in links],
                line=dict(color="rgba(51,65,85,0.1)", width=0.5),
                hovertemplate="%{customdata}<extra></extra>"
            )
        )])

        fig.update_layout(
            title=dict(text="Customer Journey Flow Analysis", x=0.5),
            font=dict(size=12, color="#334155", family="Inter, system-ui, sans-serif"),
            paper_bgcolor="rgba(255,255,255,0.98)",
            plot_bgcolor="rgba(0,0,0,0)",
            height=self.chart_height(),
            margin=dict(l=20, r=20, t=50, b=60),
            hovermode='closest'
        )
        return fig

    def create_interactive_sankey(self, output_file: Optional[str] = None):
        fig = self.build_sankey_figure()
        if fig is None:
            print("No sessions to visualize")
            return None
        if self.show_progress:
            print(f"Creating Sankey diagram for {self.analyzer.metrics['total']} sessions...")
        return self._output(fig, output_file, "Interactive Sankey diagram")

    def build_kpi_figure(self) -> go.Figure:
        metrics = self.analyzer.metrics
        labels = ['Total Sessions', 'Completed Orders', 'Dropped Sessions']
        values = [metrics['total'], metrics['completed'], metrics['dropped']]

        fig = go.Figure(go.Bar(
            x=labels,
            y=values,
            marker_color=['#7c3aed', '#16a34a', '#dc2626'],
            text=[f"{value:,}" for value in values],
            textposition='auto'
        ))
        fig.update_layout(
            title="Session Outcomes",
            yaxis_title="Sessions",
            height=400,
            showlegend=False
        )
        return fig

    def create_kpi_chart(self, output_file: Optional[str] = None):
        return self._output(self.build_kpi_figure(), output_file, "KPI chart")

    def create_heatmap(self, output_file: Optional[str] = None):
        probability_matrix = self.analyzer.export_transition_probability_matrix()

        if probability_matrix.empty:
            print("No transition data available")
            return None

        text_matrix = probability_matrix.map(lambda x: f"{x:.1%}" if x > 0 else "")

        hover_text = []
        for source in probability_matrix.index:
            hover_row = []
            for target in probability_matrix.columns:
                prob = probability_matrix.loc[source, target]
                if prob > 0:
                    hover_row.append(f"From: {source}<br>To: {target}<br>Share: {prob:.2%}")
                else:
                    hover_row.append(f"From: {source}<br>To: {target}<br>No transitions")
            hover_text.append(hover_row)

        fig = go.Figure(data=go.Heatmap(
            z=probability_matrix.values,
            x=probability_matrix.columns,
            y=probability_matrix.index,
            colorscale='Blues',
            text=text_matrix.values,
            texttemplate='%{text}',
            textfont={"size": 10},
            hoverongaps=False,
            hovertemplate='%{hovertext}<extra></extra>',
            hovertext=hover_text,
            zmin=0,
            zmax=1
        ))

        fig.update_layout(
            title="Step Transition Heatmap<br><sub>Share of sessions moving from one step to the next</sub>",
            xaxis_title="To",
            yaxis_title="From",
            height=max(400, len(probability_matrix) * 30),
            width=max(600, len(probability_matrix.columns) * 30),
            xaxis={'side': 'bottom'},
            yaxis={'autorange': 'reversed'}
        )

        return self._output(fig, output_file, "Transition heatmap")

    def build_network(self, min_transitions: int = 1) -> nx.DiGraph:
        G = nx.DiGraph()
        for (source, target), count in self.analyzer.link_counts.items():
            if count >= min_transitions:
                G.add_edge(source, target, weight=count)
        return G

    def create_network_graph(self, min_transitions: int = 1,
                             output_file: Optional[str] = None):
        G = self.build_network(min_transitions)

        if len(G.nodes()) == 0:
            print("No transitions found with the specified minimum threshold")
            return None

        pos = nx.spring_layout(G, k=2, iterations=50, seed=42)

        edge_trace = []
        for source, target in G.edges():
            x0, y0 = pos[source]
            x1, y1 = pos[target]
            weight = G[source][target]['weight']

            edge_trace.append(go.Scatter(
                x=[x0, x1, None],
                y=[y0, y1, None],
                mode='lines',
                line=dict(width=min(weight / 2, 10), color='gray'),
                hoverinfo='text',
                hovertext=f"{source} → {target}: {weight} sessions"
            ))

        node_x, node_y, node_text, node_hover, node_degree = [], [], [], [], []
        for node in G.nodes():
            x, y = pos[node]
            node_x.append(x)
            node_y.append(y)
            node_text.append(node)
            node_hover.append(f"{node}<br>In: {G.in_degree(node, weight='weight')}"
                              f"<br>Out: {G.out_degree(node, weight='weight')}")
            node_degree.append(G.degree(node))

        node_trace = go.Scatter(
            x=node_x,
            y=node_y,
            text=node_text,
            hovertext=node_hover,
            mode='markers+text',
            textposition="top center",
            hoverinfo='text',
            marker=dict(
                showscale=True,
                colorscale='YlOrRd',
                size=15,
                color=node_degree,
                colorbar=dict(
                    thickness=15,
                    title=dict(text='Connections'),
                    xanchor='left'
                ),
                line_width=2
            )
        )

        fig = go.Figure(data=edge_trace + [node_trace],
                        layout=go.Layout(
                            title='Journey Step Network',
                            showlegend=False,
                            hovermode='closest',
                            margin=dict(b=0, l=0, r=0, t=40),
                            xaxis=dict(showgrid=False, zeroline=False, showticklabels=False),
                            yaxis=dict(showgrid=False, zeroline=False, showticklabels=False),
                            height=700,
                            width=1000
                        ))

        return self._output(fig, output_file, "Network graph")

    def build_graphviz(self) -> pydot.Dot:
        graph = pydot.Dot(graph_type='digraph', rankdir='LR')
        sankey = self.analyzer.graph
        if not sankey:
            return graph

        for idx, node in enumerate(sankey['nodes']):
            label = node['label']
            if self.config.is_drop(label):
                fillcolor = 'lightcoral'
            elif label == self.config.terminal_step:
                fillcolor = 'palegreen'
            else:
                fillcolor = 'lightblue'
            graph.add_node(pydot.Node(f"n{idx}", label=node['display_label'],
                                      style="filled", fillcolor=fillcolor))

        for link in sankey['links']:
            graph.add_edge(pydot.Edge(f"n{link['source']}", f"n{link['target']}",
                                      label=f"{link['value']} ({link['percentage']}%)"))
        return graph

    def export_to_graphviz(self, output_file: str):
        """Write the flow as a Graphviz DOT file."""
        graph = self.build_graphviz()
        graph.write(output_file, format='raw')
        if self.show_progress:
            print(f"Graphviz DOT file saved to {output_file}")
        return graph

    def export_summary_csv(self, output_file: str) -> pd.DataFrame:
        table = self.analyzer.summary_dataframe()
        table.to_csv(output_file)
        if self.show_progress:
            print(f"Client summary table saved to {output_file}")
        return table

    def create_all(self, output_dir: str) -> Dict[str, str]:
        """Write every chart into output_dir and return their paths."""
        outputs = {
            'sankey': f"{output_dir}/sankey_diagram.html",
            'kpi': f"{output_dir}/kpi_chart.html",
            'heatmap': f"{output_dir}/heatmap.html",
            'network': f"{output_dir}/network_graph.html",
            'graphviz': f"{output_dir}/journey_flow.dot",
        }
        self.create_interactive_sankey(outputs['sankey'])
        self.create_kpi_chart(outputs['kpi'])
        self.create_heatmap(outputs['heatmap'])
        self.create_network_graph(output_file=outputs['network'])
        self.export_to_graphviz(outputs['graphviz'])
        return outputs
