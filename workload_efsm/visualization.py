"""
Graphviz rendering of the guarded session layer EFSM.

Each application state becomes an ellipse labelled with its service,
the exit state a double circle.  Edges carry the guard conjunction
(red) and the parameter updates (blue) of their transition, both
derived from the Z3 semantics in ``guard_semantics``.

Usage::

    from workload_efsm.visualization import EFSMVisualizer

    EFSMVisualizer().save_efsm(efsm, "output/shop/session_layer", title="Shop")
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional

import graphviz  # type: ignore[import-untyped]

from workload_efsm.guard_semantics import transition_guard, update_rule
from workload_efsm.models import ApplicationTransition, SessionLayerEFSM


@dataclass(slots=True)
class VisualizerSettings:
    """Appearance of rendered session layer diagrams.

    Attributes:
        output_format:  Rendered file type.
        rankdir:        'LR' lays the services out left to right, 'TB' top down.
        show_guards:    Print the guard conjunction on guarded edges.
        show_actions:   Print the parameter updates on edges with actions.
    """

    output_format: Literal["png", "pdf", "svg"] = "png"
    rankdir: Literal["LR", "TB"] = "LR"
    font_name: str = "Helvetica"
    font_size: int = 11
    dpi: int = 150
    state_fill: str = "#E3F2FD"
    exit_fill: str = "#FFF9C4"
    initial_border: str = "#2E7D32"
    guard_font_color: str = "#C62828"
    action_font_color: str = "#1565C0"
    edge_color: str = "#424242"
    show_guards: bool = True
    show_actions: bool = True


class EFSMVisualizer:
    """Builds and renders ``graphviz.Digraph`` views of a session layer EFSM."""

    def __init__(self, settings: Optional[VisualizerSettings] = None) -> None:
        self.settings = settings or VisualizerSettings()

    def render_efsm(
        self,
        efsm: SessionLayerEFSM,
        title: str = "Session Layer EFSM",
    ) -> graphviz.Digraph:
        """Return the diagram of *efsm* without writing anything to disk."""
        dot = graphviz.Digraph(
            name="session_layer",
            comment=title,
            format=self.settings.output_format,
            graph_attr=self._graph_attributes(title),
            node_attr={"fontname": self.settings.font_name, "fontsize": str(self.settings.font_size)},
            edge_attr={
                "fontname": self.settings.font_name,
                "fontsize": str(self.settings.font_size - 1),
                "color": self.settings.edge_color,
            },
        )
        exit_id = self._add_states(dot, efsm)
        self._add_transitions(dot, efsm, exit_id)
        return dot

    def save_efsm(
        self,
        efsm: SessionLayerEFSM,
        output_path: str | Path,
        title: str = "Session Layer EFSM",
    ) -> Path:
        """Render *efsm* to *output_path* plus the format suffix; return the file."""
        target = Path(output_path).with_suffix("")
        rendered = self.render_efsm(efsm, title=title).render(
            filename=str(target), cleanup=True, view=False,
        )
        return Path(rendered)

    # ------------------------------------------------------------------

    def _graph_attributes(self, title: str) -> dict[str, str]:
        s = self.settings
        return {
            "rankdir": s.rankdir,
            "label": title,
            "labelloc": "t",
            "fontname": s.font_name,
            "fontsize": str(s.font_size + 2),
            "dpi": str(s.dpi),
        }

    def _add_states(self, dot: graphviz.Digraph, efsm: SessionLayerEFSM) -> str:
        s = self.settings
        for state in efsm.application_states:
            initial = state is efsm.initial_state
            dot.node(
                state.eid,
                label=state.service.name,
                shape="ellipse",
                style="filled",
                fillcolor=s.state_fill,
                color=s.initial_border if initial else "#757575",
                penwidth="2.5" if initial else "1.0",
            )

        exit_id = f"exit_{efsm.exit_state.eid}"
        dot.node(exit_id, label="exit", shape="doublecircle", style="filled", fillcolor=s.exit_fill)

        if efsm.initial_state is not None:
            dot.node("__start__", label="", shape="none", width="0", height="0")
            dot.edge("__start__", efsm.initial_state.eid, arrowsize="0.8")
        return exit_id

    def _add_transitions(
        self, dot: graphviz.Digraph, efsm: SessionLayerEFSM, exit_id: str,
    ) -> None:
        for t in efsm.transitions():
            target_id = exit_id if t.target_service is None else t.target.eid
            label = self._annotation(t)
            if label:
                dot.edge(t.source.eid, target_id, label=f"<{label}>")
            else:
                dot.edge(t.source.eid, target_id)

    def _annotation(self, t: ApplicationTransition) -> str:
        """HTML-like label: guard line above update line."""
        s = self.settings
        size = s.font_size - 2
        lines: list[str] = []
        if s.show_guards and t.guards:
            guard = html.escape(f"[{transition_guard(t)}]", quote=True)
            lines.append(f'<FONT COLOR="{s.guard_font_color}" POINT-SIZE="{size}">{guard}</FONT>')
        if s.show_actions and t.actions:
            updates = "; ".join(
                f"{name}' := {expr}" for name, expr in sorted(update_rule(t).items())
            )
            lines.append(
                f'<FONT COLOR="{s.action_font_color}" POINT-SIZE="{size}">'
                f"{html.escape(updates, quote=True)}</FONT>"
            )
        return "<BR/>".join(lines)
