"""
Default capture targets used when a run is triggered without a site list.
"""

from __future__ import annotations

from models.schemas import SiteDescriptor

DEFAULT_SITES: tuple[SiteDescriptor, ...] = (
    SiteDescriptor(
        url="https://www.theguardian.com/uk",
        style_override="#notice { display: none; }",
    ),
    SiteDescriptor(
        url="https://www.itv.com/news",
        style_override="#cassie-widget { display: none; }",
    ),
    SiteDescriptor(
        url="https://bbc.co.uk/news/",
        style_override=".ssrcss-darju4-ConsentBanner { display: none; }",
    ),
    SiteDescriptor(
        url="https://news.sky.com/",
        style_override="#notice { display: none; }",
    ),
)
