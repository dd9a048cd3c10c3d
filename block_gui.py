"""
block_gui.py

Graphical User Interface for the block map viewer.

This module provides a tkinter-based GUI for:
- Painting the block map of a memory pool as a grid of colored tiles
- Scrubbing through time in realtime or operation-index mode
- Selecting a block and listing its allocation/free history
- Resizing tiles and blocks

Usage:
    from block_gui import BlockMapViewer
    from block_provider import TraceBlockProvider

    viewer = BlockMapViewer(TraceBlockProvider(pools))
    viewer.run()
"""

import logging
import queue
import tkinter as tk
from tkinter import ttk, scrolledtext, messagebox
from typing import Any, Callable, Dict, List, Optional, Tuple

from block_grid import raster_positions
from block_history import FetchState
from block_model import (
    GridLayout,
    MemorySnapshot,
    TileCategory,
    ViewerConfig,
    viewer_config,
)
from block_viewer import BlockMapSession

logger = logging.getLogger(__name__)


# ============================================================
# Color Scheme
# ============================================================

class ColorScheme:
    """Color scheme for the block map."""

    # Tiles
    UNUSED = "lightgrey"
    FREED = "lightgreen"
    PARTIAL = "yellow"
    ALLOCATED = "red"
    SELECTED = "blue"
    SAME_BLOCK = "green"

    # UI elements
    CANVAS_BG = "#FAFAFA"           # Very light gray
    TEXT = "#212121"                # Dark gray

    def for_category(self, category: TileCategory) -> str:
        return {
            TileCategory.UNUSED: self.UNUSED,
            TileCategory.FREED: self.FREED,
            TileCategory.PARTIAL: self.PARTIAL,
            TileCategory.ALLOCATED: self.ALLOCATED,
            TileCategory.SELECTED: self.SELECTED,
            TileCategory.SAME_BLOCK_HIGHLIGHT: self.SAME_BLOCK,
        }[category]


LEGEND: List[Tuple[TileCategory, str]] = [
    (TileCategory.UNUSED, "Unused"),
    (TileCategory.FREED, "Freed"),
    (TileCategory.PARTIAL, "Partial"),
    (TileCategory.ALLOCATED, "Allocated"),
    (TileCategory.SELECTED, "Selected"),
    (TileCategory.SAME_BLOCK_HIGHLIGHT, "Same block"),
]


# ============================================================
# Block Map Renderer
# ============================================================

class BlockMapRenderer:
    """Renders block map snapshots onto a tkinter canvas."""

    def __init__(self, canvas: tk.Canvas, colors: ColorScheme):
        """Initialize renderer.

        Args:
            canvas: tkinter Canvas to draw on
            colors: Color scheme to use
        """
        self.canvas = canvas
        self.colors = colors

        # canvas_id -> tile index
        self.item_map: Dict[int, int] = {}

    def clear(self) -> None:
        """Clear the canvas."""
        self.canvas.delete("all")
        self.item_map.clear()

    def render(
        self,
        snapshot: MemorySnapshot,
        layout: GridLayout,
        categories: List[TileCategory],
    ) -> None:
        """Paint every tile of ``snapshot`` at its raster position.

        Args:
            snapshot: The snapshot to render
            layout: Geometry computed for this paint
            categories: Category of each tile, in raster order
        """
        self.clear()

        size = layout.tile_size
        bottom = 0
        for index, x, y, _record in raster_positions(snapshot, layout):
            item = self.canvas.create_rectangle(
                x, y,
                x + size, y + size,
                fill=self.colors.for_category(categories[index]),
                outline="",
            )
            self.item_map[item] = index
            bottom = y + size

        # The last row can run past surface_height when the width is not a
        # whole number of tiles.
        height = max(layout.surface_height, bottom)
        self.canvas.configure(
            width=layout.surface_width,
            scrollregion=(0, 0, layout.surface_width, height),
        )


# ============================================================
# Worker -> Tk thread dispatch
# ============================================================

class UiDispatcher:
    """Queues callbacks from worker threads and runs them on the Tk thread."""

    def __init__(self, root: tk.Tk, interval_ms: int):
        self.root = root
        self.interval_ms = interval_ms
        self._queue: "queue.Queue[Tuple[Callable[..., Any], Tuple[Any, ...]]]" = queue.Queue()
        self._after_id: Optional[str] = None

    def __call__(self, fn: Callable[..., Any], *args: Any) -> None:
        self._queue.put((fn, args))

    def start(self) -> None:
        self._poll()

    def stop(self) -> None:
        if self._after_id is not None:
            self.root.after_cancel(self._after_id)
            self._after_id = None

    def _poll(self) -> None:
        while True:
            try:
                fn, args = self._queue.get_nowait()
            except queue.Empty:
                break
            try:
                fn(*args)
            except Exception:
                logger.exception("UI callback %s failed", getattr(fn, "__name__", fn))
        self._after_id = self.root.after(self.interval_ms, self._poll)


# ============================================================
# Main GUI Window
# ============================================================

class BlockMapViewer:
    """Main GUI window for the block map."""

    def __init__(self, provider: Any, config: Optional[ViewerConfig] = None):
        """Initialize the viewer.

        Args:
            provider: Object implementing ``BlockDataProvider``
            config: Viewer configuration (defaults to ``viewer_config``)
        """
        self.config = config if config is not None else viewer_config

        # Create main window
        self.root = tk.Tk()
        self.root.title(self.config.window_title)
        self.root.geometry(self.config.window_geometry)
        self.root.protocol("WM_DELETE_WINDOW", self.close)

        # Color scheme
        self.colors = ColorScheme()

        self.dispatcher = UiDispatcher(self.root, self.config.poll_interval_ms)
        self.session = BlockMapSession(provider, config=self.config, dispatch=self.dispatcher)
        self.session.subscribe(self._on_session_changed)

        self._syncing_controls = False
        self._reported_error: Optional[BaseException] = None

        # Create UI
        self._create_ui()

    def _create_ui(self) -> None:
        """Create the user interface."""
        # Main container
        main_frame = ttk.Frame(self.root)
        main_frame.pack(fill=tk.BOTH, expand=True)

        # Top toolbar
        self._create_toolbar(main_frame)

        # Bottom status bar
        self._create_status_bar(main_frame)

        # Content area (grid + details); its width is the grid's viewport
        self.content_frame = ttk.Frame(main_frame)
        self.content_frame.pack(fill=tk.BOTH, expand=True)
        self.content_frame.bind("<Configure>", self._on_resize)

        # Canvas with scrollbar
        self._create_canvas(self.content_frame)

        # Right panel for legend and details
        self._create_details_panel(self.content_frame)

    def _create_toolbar(self, parent: ttk.Frame) -> None:
        """Create the toolbar."""
        toolbar = ttk.Frame(parent, relief=tk.RAISED, borderwidth=1)
        toolbar.pack(side=tk.TOP, fill=tk.X, padx=5, pady=5)

        # Block size
        ttk.Button(toolbar, text="Block +", command=self.session.grow_blocks).pack(side=tk.LEFT, padx=2)
        ttk.Button(toolbar, text="Block -", command=self.session.shrink_blocks).pack(side=tk.LEFT, padx=2)
        self.block_label = ttk.Label(toolbar, text="")
        self.block_label.pack(side=tk.LEFT, padx=5)

        ttk.Separator(toolbar, orient=tk.VERTICAL).pack(side=tk.LEFT, fill=tk.Y, padx=10)

        # Time mode
        self.mode_button = ttk.Button(toolbar, text=self.session.mode.label, command=self.session.toggle_mode)
        self.mode_button.pack(side=tk.LEFT, padx=2)

        ttk.Separator(toolbar, orient=tk.VERTICAL).pack(side=tk.LEFT, fill=tk.Y, padx=10)

        # Tile size
        ttk.Button(toolbar, text="Tile +", command=self.session.grow_tiles).pack(side=tk.LEFT, padx=2)
        ttk.Button(toolbar, text="Tile -", command=self.session.shrink_tiles).pack(side=tk.LEFT, padx=2)

        ttk.Separator(toolbar, orient=tk.VERTICAL).pack(side=tk.LEFT, fill=tk.Y, padx=10)

        # Pool selector
        ttk.Label(toolbar, text="Pool:").pack(side=tk.LEFT, padx=5)
        self.pool_combo = ttk.Combobox(toolbar, state="readonly", width=20)
        self.pool_combo.pack(side=tk.LEFT, padx=2)
        self.pool_combo.bind("<<ComboboxSelected>>", self._on_pool_selected)

        ttk.Separator(toolbar, orient=tk.VERTICAL).pack(side=tk.LEFT, fill=tk.Y, padx=10)

        # Time slider
        self.time_label = ttk.Label(toolbar, text="", width=14)
        self.time_label.pack(side=tk.LEFT, padx=5)
        self.time_slider = ttk.Scale(
            toolbar,
            from_=0,
            to=1,
            orient=tk.HORIZONTAL,
            length=300,
            command=self._on_slider_change
        )
        self.time_slider.pack(side=tk.LEFT, padx=5)

        # Realtime window offset
        ttk.Label(toolbar, text="Offset:").pack(side=tk.LEFT, padx=5)
        self.offset_var = tk.StringVar(value="0")
        offset_box = ttk.Spinbox(
            toolbar,
            from_=-1_000_000,
            to=1_000_000,
            increment=100,
            width=10,
            textvariable=self.offset_var,
            command=self._on_offset_change
        )
        offset_box.pack(side=tk.LEFT, padx=2)
        offset_box.bind("<Return>", lambda event: self._on_offset_change())

        # Refresh button
        ttk.Button(toolbar, text="⟳ Refresh", command=self.session.refresh).pack(side=tk.LEFT, padx=10)

    def _create_canvas(self, parent: ttk.Frame) -> None:
        """Create the canvas area."""
        canvas_frame = ttk.Frame(parent)
        canvas_frame.pack(side=tk.LEFT, fill=tk.Y)

        self.canvas = tk.Canvas(
            canvas_frame,
            bg=self.colors.CANVAS_BG,
            highlightthickness=0,
            width=1,
        )
        v_scroll = ttk.Scrollbar(canvas_frame, orient=tk.VERTICAL, command=self.canvas.yview)
        self.canvas.configure(yscrollcommand=v_scroll.set)

        v_scroll.pack(side=tk.RIGHT, fill=tk.Y)
        self.canvas.pack(side=tk.LEFT, fill=tk.Y)

        # Create renderer
        self.renderer = BlockMapRenderer(self.canvas, self.colors)

        # Bind canvas events
        self.canvas.bind("<Button-1>", self._on_canvas_click)

    def _create_details_panel(self, parent: ttk.Frame) -> None:
        """Create the legend and the details panel."""
        side_frame = ttk.Frame(parent)
        side_frame.pack(side=tk.LEFT, fill=tk.BOTH, expand=True, padx=5)

        legend = ttk.LabelFrame(side_frame, text="Legend")
        legend.pack(side=tk.TOP, fill=tk.X)
        for category, text in LEGEND:
            tk.Label(
                legend,
                text=text,
                bg=self.colors.for_category(category),
                fg="white" if category is TileCategory.SELECTED else self.colors.TEXT,
                padx=6,
            ).pack(side=tk.LEFT, padx=2, pady=2)

        details_frame = ttk.LabelFrame(side_frame, text="Block history")
        details_frame.pack(side=tk.TOP, fill=tk.BOTH, expand=True, pady=5)

        self.details_text = scrolledtext.ScrolledText(
            details_frame,
            wrap=tk.WORD,
            width=40,
            height=20,
            font=("Courier", 9)
        )
        self.details_text.pack(fill=tk.BOTH, expand=True, padx=5, pady=5)

    def _create_status_bar(self, parent: ttk.Frame) -> None:
        """Create the status bar."""
        status_frame = ttk.Frame(parent, relief=tk.SUNKEN, borderwidth=1)
        status_frame.pack(side=tk.BOTTOM, fill=tk.X)

        self.status_label = ttk.Label(status_frame, text="Ready", anchor=tk.W)
        self.status_label.pack(side=tk.LEFT, padx=10, pady=2)

    # ------------------------------------------------------------
    # Session -> widgets
    # ------------------------------------------------------------

    def _on_session_changed(self, session: BlockMapSession) -> None:
        """Repaint everything the session exposes."""
        self.renderer.render(session.snapshot, session.layout(), session.tiles())
        self._sync_controls(session)
        self._update_details(session)
        self._update_status(session)

    def _sync_controls(self, session: BlockMapSession) -> None:
        self._syncing_controls = True
        try:
            self.block_label.config(text=f"{session.block_size} B / block")
            self.mode_button.config(text=session.mode.label)
            self.pool_combo.configure(values=session.pool_names)
            if 0 <= session.pool_id < len(session.pool_names):
                self.pool_combo.current(session.pool_id)
            self.time_slider.configure(to=max(1, session.time_limit))
            self.time_slider.set(session.timestamp)
            self.time_label.config(text=f"{session.mode.label} {session.effective_timestamp()}")
        finally:
            self._syncing_controls = False

    def _update_details(self, session: BlockMapSession) -> None:
        """Update the details panel with the selected block's history."""
        selection = session.selection.state
        lines = []
        if selection.has_selection:
            lines.append(f"Block id: {selection.selected_block_id}\n")
            lines.append(f"Tile: {selection.selected_tile_index}\n")
            lines.append(f"Status: {selection.status_bucket_at_selection}\n")
        else:
            lines.append("(no selection)\n")
        lines.append("\n")
        lines.append(session.history.format_entries(self.config.left_padding, self.config.right_padding))

        self.details_text.delete("1.0", tk.END)
        self.details_text.insert("1.0", "".join(lines))

    def _update_status(self, session: BlockMapSession) -> None:
        text = session.describe()
        if session.history.state is FetchState.FETCHING:
            text += " | loading history..."
        if session.last_error is not None:
            text += f" | error: {session.last_error}"
            if session.last_error is not self._reported_error:
                self._reported_error = session.last_error
                messagebox.showerror("Snapshot Error", str(session.last_error))
        self.status_label.config(text=text)

    # ------------------------------------------------------------
    # Widgets -> session
    # ------------------------------------------------------------

    def _on_canvas_click(self, event) -> None:
        """Handle canvas click events."""
        x = self.canvas.canvasx(event.x)
        y = self.canvas.canvasy(event.y)
        self.session.click(x, y)

    def _on_resize(self, event) -> None:
        self.session.resize(event.width)

    def _on_pool_selected(self, event) -> None:
        index = self.pool_combo.current()
        if index >= 0 and index != self.session.pool_id:
            self.session.select_pool(index)

    def _on_slider_change(self, value) -> None:
        """Handle slider value change."""
        if not self._syncing_controls:
            self.session.scrub(int(float(value)))

    def _on_offset_change(self) -> None:
        try:
            offset = int(self.offset_var.get())
        except ValueError:
            self.status_label.config(text=f"Invalid offset: {self.offset_var.get()!r}")
            return
        self.session.set_realtime_offset(offset)

    def run(self) -> None:
        """Load data and run the GUI main loop."""
        self.dispatcher.start()
        self.session.load()
        self.root.mainloop()

    def close(self) -> None:
        self.dispatcher.stop()
        self.session.shutdown()
        self.root.destroy()


# ============================================================
# Convenience function
# ============================================================

def visualize_trace(provider: Any, config: Optional[ViewerConfig] = None) -> None:
    """Convenience function to open the viewer over a provider.

    Args:
        provider: Object implementing ``BlockDataProvider``
        config: Viewer configuration (defaults to ``viewer_config``)
    """
    viewer = BlockMapViewer(provider, config)
    viewer.run()


if __name__ == "__main__":
    from block_logging import setup_logger
    from block_provider import TraceBlockProvider, TraceBuilder

    setup_logger()

    builder = TraceBuilder("heap")
    builder, buf = builder.malloc(256, "main\nread_input")
    builder, node = builder.malloc(48, "main\nlist_push")
    builder, tmp = builder.malloc(100, "main\nformat")
    builder.free(tmp, "main\nformat")
    builder, node2 = builder.malloc(48, "main\nlist_push")
    builder.free(buf, "main\ncleanup")

    visualize_trace(TraceBlockProvider([builder.build()]))
