"""Supported hosts.

Each constant below is one host, configured for the strategy kind that
matches its page flow. To support a new host that behaves like an
existing one, add a config constant and append it to
``ALL_HOST_CONFIGS``; order matters, the first matching host wins.
"""

from __future__ import annotations

import re

from resolvarr.domain.ports.strategy import ResolutionStrategyPort
from resolvarr.infrastructure.decoding.chain import (
    GATEWAY_PAYLOAD_CHAIN,
    PACKED_PLAYER_CHAIN,
    PLAYER_CIPHER_CHAIN,
    DecodeOp,
    DecodeStep,
)
from resolvarr.infrastructure.strategies.aggregator_host import (
    AggregatorHostConfig,
    AggregatorHostStrategy,
)
from resolvarr.infrastructure.strategies.base import (
    BaseStrategy,
    HostConfig,
    StrategyServices,
)
from resolvarr.infrastructure.strategies.cipher_payload import (
    PACKED_SCRIPT_RE,
    CipherPayloadConfig,
    CipherPayloadStrategy,
    PayloadSource,
    TargetRule,
)
from resolvarr.infrastructure.strategies.fallback import (
    GENERIC_FALLBACK,
    DirectMediaFallbackStrategy,
)
from resolvarr.infrastructure.strategies.html_scrape import (
    ButtonAction,
    ButtonRule,
    FieldSpec,
    HtmlScrapeConfig,
    HtmlScrapeStrategy,
)
from resolvarr.infrastructure.strategies.json_api import (
    ApiFlow,
    JsonApiConfig,
    JsonApiStrategy,
)
from resolvarr.infrastructure.strategies.redirect_chain import (
    RedirectChainConfig,
    RedirectChainStrategy,
)

_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:134.0) "
        "Gecko/20100101 Firefox/134.0"
    ),
}

# ---------------------------------------------------------------------------
# Gateways (checked first: their URLs embed other hosts' names)
# ---------------------------------------------------------------------------

HDHUB_GATEWAY = CipherPayloadConfig(
    name="hdhub-gateway",
    patterns=(re.compile(r"/\?id=[A-Za-z0-9+/=%]{8,}"),),
    payload_re=re.compile(r"s\('o','([A-Za-z0-9+/=]+)'|ck\('_wp_http_\d+','([^']+)'"),
    decode_chain=GATEWAY_PAYLOAD_CHAIN,
    target=TargetRule.GATEWAY_JSON,
    delegate_target=True,
)

HUBCDN = CipherPayloadConfig(
    name="hubcdn",
    patterns=(re.compile(r"hubcdn\.", re.IGNORECASE),),
    alias_key="hubcdn",
    allows_streaming=True,
    url_param="r",
    payload_re=re.compile(r"[?&\"']r=([A-Za-z0-9+/=]+)"),
    decode_chain=(DecodeStep(DecodeOp.BASE64),),
    target=TargetRule.AFTER_LINK_PARAM,
)

VIDSTACK = CipherPayloadConfig(
    name="vidstack",
    patterns=(re.compile(r"(?:vidstack|rpmhub|rpmplay|uns\.bio|p2pplay)", re.IGNORECASE),),
    allows_streaming=True,
    source=PayloadSource.API,
    api_headers=_BROWSER_HEADERS,
    decode_chain=PLAYER_CIPHER_CHAIN,
    target=TargetRule.MANIFEST_JSON,
    quality_hint="1080p",
)

# ---------------------------------------------------------------------------
# Packed JWPlayer hosts
# ---------------------------------------------------------------------------

STREAMWISH = CipherPayloadConfig(
    name="streamwish",
    patterns=(
        re.compile(
            r"(?:streamwish|strwish|asnwish|cdnwish|wishonly|luluvdo|lulu\.st"
            r"|multimovies\.cloud|animezia|server2\.shop|allinonedownloader)",
            re.IGNORECASE,
        ),
    ),
    allows_streaming=True,
    payload_re=PACKED_SCRIPT_RE,
    decode_chain=PACKED_PLAYER_CHAIN,
    target=TargetRule.PLAYER_SOURCES,
)

FILESIM = CipherPayloadConfig(
    name="filesim",
    patterns=(re.compile(r"(?:filesim|fmhd\.|playonion)", re.IGNORECASE),),
    allows_streaming=True,
    payload_re=PACKED_SCRIPT_RE,
    decode_chain=PACKED_PLAYER_CHAIN,
    target=TargetRule.PLAYER_SOURCES,
)

VIDHIDE = CipherPayloadConfig(
    name="vidhide",
    patterns=(re.compile(r"(?:vidhide|filelions)", re.IGNORECASE),),
    allows_streaming=True,
    payload_re=PACKED_SCRIPT_RE,
    decode_chain=PACKED_PLAYER_CHAIN,
    target=TargetRule.PLAYER_SOURCES,
)

# Mirror pages embed the player in an iframe.
FILEMOON = CipherPayloadConfig(
    name="filemoon",
    patterns=(re.compile(r"(?:filemoon|fmx\.lol)", re.IGNORECASE),),
    allows_streaming=True,
    payload_re=PACKED_SCRIPT_RE,
    decode_chain=PACKED_PLAYER_CHAIN,
    target=TargetRule.PLAYER_SOURCES,
    iframe_selector='iframe[src*="filemoon"]',
)

DDN = RedirectChainConfig(
    name="ddn",
    patterns=(re.compile(r"ddn\.iqsmartgames\.", re.IGNORECASE),),
    gateway_fragment="iqsmartgames",
)

PIXELDRAIN = RedirectChainConfig(
    name="pixeldrain",
    patterns=(re.compile(r"pixeldra(?:in)?\.[a-z]+/u/", re.IGNORECASE),),
    rewrite=(
        re.compile(r"^(https?://[^/]+)/u/([A-Za-z0-9]+).*$"),
        r"\1/api/file/\2?download",
    ),
    walk=False,
)

# ---------------------------------------------------------------------------
# Aggregator hosts
# ---------------------------------------------------------------------------

HBLINKS = AggregatorHostConfig(
    name="hblinks",
    patterns=(re.compile(r"hblinks\.", re.IGNORECASE),),
    alias_key="hblinks",
    link_selectors=("h3 a, h5 a, div.entry-content p a",),
    href_pattern=re.compile(r"hubdrive|hubcloud|hubcdn|pixeldra", re.IGNORECASE),
    skip_markers=("viralkhabarbull", "?id="),
)

HUBDRIVE = AggregatorHostConfig(
    name="hubdrive",
    patterns=(re.compile(r"hubdrive\.", re.IGNORECASE),),
    alias_key="hubdrive",
    link_selectors=(
        'a.btn:-soup-contains("HubCloud"), a.btn:-soup-contains("Server"), a.btn[href*="hubcloud"]',
        ".btn.btn-primary.btn-user.btn-success1.m-1",
        "a.btn-primary[href]",
    ),
    first_only=True,
)

MDRIVE = AggregatorHostConfig(
    name="mdrive",
    patterns=(re.compile(r"mdrive\.", re.IGNORECASE), re.compile(r"/archives/\d+")),
    alias_key="moviesdrive",
    link_selectors=("h5 a, p a, a.btn",),
    href_pattern=re.compile(r"hubcloud|gdflix|gdlink", re.IGNORECASE),
)

# ---------------------------------------------------------------------------
# File pages
# ---------------------------------------------------------------------------

HUBCLOUD = HtmlScrapeConfig(
    name="hubcloud",
    patterns=(re.compile(r"hubcloud\.", re.IGNORECASE),),
    alias_key="hubcloud",
    landing_selector="div.vd > center > a",
    landing_script_re=re.compile(r"var url = '([^']*)'"),
    landing_script_marker="drive",
    title=FieldSpec("div.card-header"),
    size=FieldSpec("i#size"),
    button_selector="div.card-body h2 a.btn",
    button_rules=(
        ButtonRule(
            ButtonAction.DIRECT,
            text_markers=("FSL Server", "FSLv2", "Mega", "Download File", "S3"),
        ),
        ButtonRule(ButtonAction.HX_REDIRECT, text_markers=("BuzzServer",)),
        ButtonRule(ButtonAction.PIXELDRAIN, href_markers=("pixeldra",)),
        ButtonRule(ButtonAction.WALK, text_markers=("10Gbps",)),
    ),
    fallback_action=ButtonAction.MEDIA_ONLY,
)

GDFLIX = HtmlScrapeConfig(
    name="gdflix",
    patterns=(re.compile(r"gdflix|gdlink", re.IGNORECASE),),
    alias_key="gdflix",
    title=FieldSpec("ul > li.list-group-item", "Name"),
    size=FieldSpec("ul > li.list-group-item", "Size"),
    button_selector="div.text-center a",
    button_rules=(
        ButtonRule(ButtonAction.DIRECT, text_markers=("DIRECT DL", "DIRECT SERVER")),
        ButtonRule(ButtonAction.URL_PARAM, text_markers=("CLOUD DOWNLOAD [R2]",)),
        ButtonRule(ButtonAction.PIXELDRAIN, href_markers=("pixeldra",)),
        ButtonRule(ButtonAction.REDIRECT_PARAM, text_markers=("Instant DL",)),
        ButtonRule(ButtonAction.DRIVEBOT, text_markers=("DRIVEBOT",), slow=True),
        ButtonRule(ButtonAction.INDEX_PAGES, text_markers=("Index Links",), slow=True),
        ButtonRule(ButtonAction.PAGE_THEN_DELEGATE, text_markers=("GoFile",), slow=True),
    ),
)

# ---------------------------------------------------------------------------
# JSON APIs
# ---------------------------------------------------------------------------

GOFILE = JsonApiConfig(
    name="gofile",
    patterns=(re.compile(r"gofile\.", re.IGNORECASE),),
    alias_key="gofile",
    flow=ApiFlow.GOFILE_CONTENTS,
)

GDMIRROR = JsonApiConfig(
    name="gdmirror",
    patterns=(re.compile(r"gdmirror|techinmind|embedhelper", re.IGNORECASE),),
    flow=ApiFlow.MIRROR_MAP,
)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

ALL_HOST_CONFIGS: tuple[HostConfig, ...] = (
    HDHUB_GATEWAY,
    HUBCDN,
    VIDSTACK,
    STREAMWISH,
    FILESIM,
    VIDHIDE,
    FILEMOON,
    DDN,
    PIXELDRAIN,
    HBLINKS,
    HUBDRIVE,
    MDRIVE,
    HUBCLOUD,
    GDFLIX,
    GOFILE,
    GDMIRROR,
)

_STRATEGY_KINDS: dict[type[HostConfig], type[BaseStrategy]] = {
    HtmlScrapeConfig: HtmlScrapeStrategy,
    RedirectChainConfig: RedirectChainStrategy,
    CipherPayloadConfig: CipherPayloadStrategy,
    JsonApiConfig: JsonApiStrategy,
    AggregatorHostConfig: AggregatorHostStrategy,
}


def strategy_for(config: HostConfig, services: StrategyServices) -> BaseStrategy:
    """Instantiate the strategy class of *config*'s kind."""
    try:
        kind = _STRATEGY_KINDS[type(config)]
    except KeyError:
        raise TypeError(f"no strategy kind for {type(config).__name__}") from None
    return kind(config, services)


def create_all_strategies(
    services: StrategyServices,
    configs: tuple[HostConfig, ...] = ALL_HOST_CONFIGS,
) -> list[ResolutionStrategyPort]:
    """Create one strategy per configured host, in dispatch order."""
    return [strategy_for(cfg, services) for cfg in configs]


def create_fallback_strategy(services: StrategyServices) -> DirectMediaFallbackStrategy:
    return DirectMediaFallbackStrategy(GENERIC_FALLBACK, services)
