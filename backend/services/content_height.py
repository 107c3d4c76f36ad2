"""
Content height calculation.

Given a background size and the assembled layers, work out how much
vertical space the main photo, its margins, the drop shadow and the text
stack need, and where the main photo starts.
"""
import math
from typing import List, Sequence

from domain.models import ContentLayout, Material, WatermarkOptions

# Gap between the text stack and the bottom edge, as a share of background height
TEXT_BOTTOM_RATIO = 0.027
# With text present the photo/text gap is tighter than the top margin
TEXT_GAP_FACTOR = 0.75


def calc_content_layout(
    bg_height: float,
    main_height: float,
    text_heights: Sequence[float],
    options: WatermarkOptions,
) -> ContentLayout:
    """
    Compute the main photo's top offset and the total content height.

    Text heights are the authored bitmap heights. The extra bottom margin is
    accounted for once, through the photo offset; callers that keep a text
    stack grow its bottommost entry by `text_bottom_offset` afterwards
    (see `apply_content_layout`).
    """
    main_img_top_offset = bg_height * (options.mini_top_bottom_margin / 100)
    text_bottom_offset = bg_height * TEXT_BOTTOM_RATIO

    content_top = math.ceil(main_img_top_offset)
    main_img_offset: float = content_top * 2

    if options.shadow_show:
        shadow_height = math.ceil(main_height * ((options.shadow or 0) / 100))
        content_top = max(content_top, shadow_height)
        main_img_offset = content_top * 2

    bare_content_h = math.ceil(main_height + main_img_offset)
    if text_heights:
        main_img_offset *= TEXT_GAP_FACTOR
        main_img_offset += text_bottom_offset

    text_h = sum(text_heights)
    # A text stack never yields less room than the bare photo would get
    content_h = max(bare_content_h, math.ceil(text_h + main_height + main_img_offset))

    return ContentLayout(
        content_top=content_top,
        content_h=content_h,
        text_bottom_offset=text_bottom_offset if text_heights else 0.0,
    )


def apply_content_layout(material: Material, options: WatermarkOptions) -> ContentLayout:
    """Run the calculation on a Material and write the results back into it."""
    main = material.main[0]
    heights: List[float] = [t.h for t in material.text]
    layout = calc_content_layout(material.bg.h, main.h, heights, options)

    main.top = layout.content_top
    if material.text:
        # The bottommost text absorbs the bottom margin
        material.text[-1].h += layout.text_bottom_offset
        material.text[-1].bottom_pad += layout.text_bottom_offset
    return layout
