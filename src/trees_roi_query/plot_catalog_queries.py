"""
Visualize catalog tile extents and the ROIs queried against them.
Shows tiles, extracted ROIs and ROIs outside the catalog on the same plot.
"""

from pathlib import Path
from typing import Optional, Sequence

import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
from matplotlib.collections import PatchCollection

from .shapes import Circle, Query


def _roi_patch(query: Query, **style):
    shape = query.shape
    if isinstance(shape, Circle):
        return mpatches.Circle((shape.x, shape.y), shape.r, **style)
    xmin, ymin, xmax, ymax = shape.bbox
    return mpatches.Rectangle((xmin, ymin), xmax - xmin, ymax - ymin, **style)


def plot_catalog_queries(
    source,
    queries: Sequence[Query],
    output_png: Path,
    unresolved: Sequence[str] = (),
    errors: Sequence[str] = (),
    label_tiles: Optional[bool] = None,
) -> Path:
    """
    Create visualization of catalog tiles and queried ROIs.

    Args:
        source: Catalog or LasFile
        queries: All queries, including unresolved ones
        output_png: Output PNG file path
        unresolved: Names of ROIs outside every tile (drawn dashed grey)
        errors: Names of ROIs with tile read errors (drawn orange)
        label_tiles: Write file names on tiles (default: only for <= 50 tiles)
    """
    if label_tiles is None:
        label_tiles = len(source.tiles) <= 50
    unresolved = set(unresolved)
    errors = set(errors)

    # Calculate overall extent
    all_xs = []
    all_ys = []
    for tile in source.tiles:
        all_xs.extend([tile.xmin, tile.xmax])
        all_ys.extend([tile.ymin, tile.ymax])
    for query in queries:
        xmin, ymin, xmax, ymax = query.shape.bbox
        all_xs.extend([xmin, xmax])
        all_ys.extend([ymin, ymax])

    overall_xmin, overall_xmax = min(all_xs), max(all_xs)
    overall_ymin, overall_ymax = min(all_ys), max(all_ys)

    # Add padding
    x_padding = max((overall_xmax - overall_xmin) * 0.05, 1.0)
    y_padding = max((overall_ymax - overall_ymin) * 0.05, 1.0)

    fig, ax = plt.subplots(1, 1, figsize=(16, 12))

    # Plot tile extents
    tile_patches = []
    for tile in source.tiles:
        rect = mpatches.Rectangle((tile.xmin, tile.ymin), tile.xmax - tile.xmin, tile.ymax - tile.ymin,
                                  edgecolor='blue', facecolor='lightblue',
                                  alpha=0.5, linewidth=1.5)
        tile_patches.append(rect)
        if label_tiles:
            ax.text((tile.xmin + tile.xmax) / 2, (tile.ymin + tile.ymax) / 2, tile.name,
                    ha='center', va='center',
                    fontsize=8, color='darkblue', weight='bold',
                    bbox=dict(boxstyle='round,pad=0.3', facecolor='white', alpha=0.7))
    ax.add_collection(PatchCollection(tile_patches, match_original=True))

    # Plot ROIs
    roi_patches = []
    for query in queries:
        if query.name in unresolved:
            style = dict(edgecolor='grey', facecolor='none', linestyle='--', linewidth=1.5)
        elif query.name in errors:
            style = dict(edgecolor='darkorange', facecolor='moccasin', alpha=0.7, linewidth=2)
        else:
            style = dict(edgecolor='indianred', facecolor='mistyrose', alpha=0.7, linewidth=2)
        roi_patches.append(_roi_patch(query, **style))
        ax.text(query.x, query.y, query.name, ha='center', va='center', fontsize=7, color='darkred')
    ax.add_collection(PatchCollection(roi_patches, match_original=True))

    crs = getattr(source, 'crs', None) or 'unknown'
    ax.set_xlim(overall_xmin - x_padding, overall_xmax + x_padding)
    ax.set_ylim(overall_ymin - y_padding, overall_ymax + y_padding)
    ax.set_aspect('equal')
    ax.set_xlabel(f'X (CRS: {crs})', fontsize=12)
    ax.set_ylabel(f'Y (CRS: {crs})', fontsize=12)
    ax.set_title('Catalog Tiles and ROI Queries\n(Blue = tiles, Red = ROIs, Grey = outside catalog)',
                 fontsize=14, weight='bold')
    ax.grid(True, alpha=0.3)

    tile_legend = mpatches.Patch(color='lightblue', alpha=0.5, label='Tile extent')
    roi_legend = mpatches.Patch(facecolor='mistyrose', edgecolor='indianred', alpha=0.7, label='ROI')
    handles = [tile_legend, roi_legend]
    if errors:
        handles.append(mpatches.Patch(facecolor='moccasin', edgecolor='darkorange', label='ROI with read errors'))
    if unresolved:
        handles.append(mpatches.Patch(facecolor='none', edgecolor='grey', linestyle='--', label='ROI outside catalog'))
    ax.legend(handles=handles, loc='upper right', fontsize=10)

    stats_text = f'Tiles: {len(source.tiles)}\nROIs: {len(queries)}\nOutside: {len(unresolved)}'
    ax.text(0.02, 0.98, stats_text, transform=ax.transAxes,
            fontsize=10, verticalalignment='top',
            bbox=dict(boxstyle='round', facecolor='wheat', alpha=0.5))

    plt.tight_layout()

    output_png = Path(output_png)
    output_png.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_png, dpi=150, bbox_inches='tight')
    plt.close(fig)
    print(f"\nVisualization saved to: {output_png}")
    return output_png
