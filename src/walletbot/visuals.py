"""Chart and QR rendering.

Every renderer returns PNG bytes ready to upload as a photo. Rendering is
CPU-bound; callers run it in a worker thread.
"""

import io
import logging
from decimal import Decimal
from typing import Sequence

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import qrcode  # noqa: E402

from walletbot.errors import VisualizationError  # noqa: E402
from walletbot.history import BalancePoint  # noqa: E402

logger = logging.getLogger(__name__)

BACKGROUND = "#333333"
ACCENT = "#0088cc"
MUTED = "#b3b3b3"
PALETTE = [
    "#0088cc",
    "#00cc88",
    "#cc0088",
    "#cc8800",
    "#88cc00",
    "#8800cc",
    "#cc0000",
    "#00cccc",
]


def _to_png(fig) -> bytes:
    buffer = io.BytesIO()
    try:
        fig.savefig(buffer, format="png", facecolor=fig.get_facecolor(), bbox_inches="tight")
    finally:
        plt.close(fig)
    return buffer.getvalue()


class Visualizer:
    """Renders the monitor charts and the verification QR code."""

    def __init__(self, width: float = 6.0, height: float = 4.0):
        self.figsize = (width, height)

    def render_balance_series(self, points: Sequence[BalancePoint]) -> bytes:
        """Line chart of total wallet value over time.

        Raises:
            VisualizationError: If there is nothing to plot or rendering fails
        """
        if not points:
            raise VisualizationError("No balance history to plot")

        try:
            fig, ax = plt.subplots(figsize=self.figsize, facecolor=BACKGROUND)
            ax.set_facecolor(BACKGROUND)
            labels = [p.timestamp.strftime("%H:%M") for p in points]
            values = [float(p.total_usd) for p in points]
            positions = range(len(values))

            marker = "o" if len(values) < 3 else None
            ax.plot(positions, values, color=ACCENT, linewidth=2, marker=marker)
            ax.fill_between(positions, values, color=ACCENT, alpha=0.2)
            ax.set_xticks(list(positions))
            ax.set_xticklabels(labels, rotation=45, color=MUTED, fontsize=8)
            ax.tick_params(axis="y", colors=MUTED)
            ax.yaxis.set_major_formatter(lambda v, _pos: f"${v:,.2f}")
            ax.grid(True, color="white", alpha=0.1)
            ax.set_title("Balance (USD)", color="white")
            for spine in ax.spines.values():
                spine.set_visible(False)
            return _to_png(fig)
        except VisualizationError:
            raise
        except Exception as e:
            logger.error(f"Balance chart rendering failed: {e}")
            raise VisualizationError(f"Could not render balance chart: {e}") from e

    def render_allocation(self, items: Sequence[tuple[str, Decimal]]) -> bytes:
        """Doughnut chart of portfolio share per symbol.

        Args:
            items: ``(symbol, usd_value)`` pairs; non-positive values are skipped

        Raises:
            VisualizationError: If no asset has a positive value or rendering fails
        """
        slices = sorted(
            ((symbol, float(value)) for symbol, value in items if value > 0),
            key=lambda item: item[1],
            reverse=True,
        )
        if not slices:
            raise VisualizationError("No priced assets to plot")

        total = sum(value for _, value in slices)
        labels = [f"{symbol} ({value / total * 100:.1f}%)" for symbol, value in slices]
        colors = [PALETTE[i % len(PALETTE)] for i in range(len(slices))]

        try:
            fig, ax = plt.subplots(figsize=self.figsize, facecolor=BACKGROUND)
            wedges, _ = ax.pie(
                [value for _, value in slices],
                colors=colors,
                startangle=90,
                counterclock=False,
                wedgeprops={"width": 0.4, "linewidth": 0},
            )
            ax.legend(
                wedges,
                labels,
                loc="center left",
                bbox_to_anchor=(1.0, 0.5),
                frameon=False,
                labelcolor=MUTED,
            )
            ax.set_title("Portfolio Allocation", color="white")
            ax.axis("equal")
            return _to_png(fig)
        except Exception as e:
            logger.error(f"Allocation chart rendering failed: {e}")
            raise VisualizationError(f"Could not render allocation chart: {e}") from e

    def render_scannable_code(self, payload: str) -> bytes:
        """QR code for ``payload`` in Telegram blue.

        Raises:
            VisualizationError: If the payload is empty or encoding fails
        """
        if not payload:
            raise VisualizationError("Nothing to encode")

        try:
            code = qrcode.QRCode(
                error_correction=qrcode.constants.ERROR_CORRECT_M,
                box_size=8,
                border=1,
            )
            code.add_data(payload)
            code.make(fit=True)
            image = code.make_image(fill_color=ACCENT, back_color="white")
            buffer = io.BytesIO()
            image.save(buffer, format="PNG")
            return buffer.getvalue()
        except Exception as e:
            logger.error(f"QR rendering failed: {e}")
            raise VisualizationError(f"Could not render QR code: {e}") from e
