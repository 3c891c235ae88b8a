"""URL classification, resource keys and candidate access URLs."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from .models import ResourceRef, SiteType


VIDEO_EXTENSIONS = (".mp4", ".mov", ".m4v", ".webm", ".mkv", ".avi")

_SLUG_MAX_LENGTH = 50
_SLUG_DIGEST_LENGTH = 12


def classify_url_heuristic(url: str) -> SiteType:
    """Classify URL by hostname (instant, no network)."""
    try:
        parsed = urlparse(url)
        host = parsed.netloc.lower()
    except Exception:
        return SiteType.GENERIC

    if host.endswith("drive.google.com") or host.endswith("docs.google.com") \
            or host.endswith("drive.usercontent.google.com"):
        return SiteType.GOOGLE_DRIVE

    if "dropbox.com" in host or "dropboxusercontent.com" in host:
        return SiteType.DROPBOX

    if "youtube.com" in host or "youtu.be" in host:
        return SiteType.YOUTUBE

    if "twitch.tv" in host:
        return SiteType.TWITCH

    return SiteType.GENERIC


@dataclass(frozen=True)
class _Matcher:
    name: str
    site: SiteType
    pattern: "re.Pattern[str]"


# Order matters: first match wins.
_MATCHERS: tuple[_Matcher, ...] = (
    _Matcher("drive_file_path", SiteType.GOOGLE_DRIVE, re.compile(r"/file/d/([\w-]+)")),
    _Matcher("drive_id_param", SiteType.GOOGLE_DRIVE, re.compile(r"[?&]id=([\w-]+)")),
    _Matcher("dropbox_shared", SiteType.DROPBOX, re.compile(r"/s/([\w-]+)")),
    _Matcher("dropbox_scl", SiteType.DROPBOX, re.compile(r"/scl/fi/([\w-]+)")),
    _Matcher("youtube_watch", SiteType.YOUTUBE, re.compile(r"[?&]v=([\w-]{6,})")),
    _Matcher("youtube_short_link", SiteType.YOUTUBE, re.compile(r"youtu\.be/([\w-]+)")),
    _Matcher("youtube_shorts", SiteType.YOUTUBE, re.compile(r"/shorts/([\w-]+)")),
    _Matcher("twitch_vod", SiteType.TWITCH, re.compile(r"/videos/(\d+)")),
    _Matcher("twitch_clip", SiteType.TWITCH, re.compile(r"(?:/clip/|clips\.twitch\.tv/)([\w-]+)")),
)


def slugify_url(url: str, max_length: int = _SLUG_MAX_LENGTH) -> str:
    """Filesystem-safe slug of a whole URL.

    The readable part is truncated to ``max_length``; a short digest of the
    full URL keeps URLs with a shared prefix apart.
    """
    slug = re.sub(r"[^a-zA-Z0-9]", "_", url)[:max_length] or "resource"
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:_SLUG_DIGEST_LENGTH]
    return f"{slug}_{digest}"


def _is_direct_media(url: str) -> bool:
    try:
        path = urlparse(url).path.lower()
    except Exception:
        return False
    return path.endswith(VIDEO_EXTENSIONS)


def match_resource(url: str) -> Optional[ResourceRef]:
    """Extract the remote file identifier from a URL.

    Matchers only apply to URLs on their own host family. A plain http(s)
    link to a media file matches as a generic direct resource.
    """
    site = classify_url_heuristic(url)
    for matcher in _MATCHERS:
        if matcher.site != site:
            continue
        match = matcher.pattern.search(url)
        if match:
            return ResourceRef(site=site, identifier=match.group(1), matcher=matcher.name)

    if _is_direct_media(url) and urlparse(url).scheme in ("http", "https"):
        return ResourceRef(site=SiteType.GENERIC, identifier=slugify_url(url), matcher="direct_file")
    return None


def resource_key(url: str) -> str:
    """Key used for locking and scratch-file naming.

    Best effort: two differently shaped links to the same file may still
    produce different keys.
    """
    ref = match_resource(url)
    if ref is not None:
        return ref.identifier
    return slugify_url(url)


def dropbox_direct_url(url: str) -> str:
    """Rewrite a Dropbox share link to the direct-content host."""
    parsed = urlparse(url)
    host = parsed.netloc.lower()
    if "dropboxusercontent.com" in host:
        return url
    query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != "dl"]
    return urlunparse(parsed._replace(netloc="dl.dropboxusercontent.com", query=urlencode(query)))


def _dropbox_download_param(url: str) -> str:
    parsed = urlparse(url)
    query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != "dl"]
    query.append(("dl", "1"))
    return urlunparse(parsed._replace(query=urlencode(query)))


def _drive_direct(file_id: str) -> str:
    return f"https://drive.usercontent.google.com/download?id={file_id}&export=download&confirm=t"


def probe_urls(url: str, ref: ResourceRef) -> list[str]:
    """Ordered candidate URLs for a metadata probe of ``ref``."""
    if ref.site == SiteType.GOOGLE_DRIVE:
        file_id = ref.identifier
        return [
            f"https://drive.google.com/uc?export=download&id={file_id}",
            f"https://drive.google.com/u/0/uc?id={file_id}&export=download",
            f"https://docs.google.com/uc?export=download&id={file_id}",
            f"https://drive.google.com/file/d/{file_id}/view?usp=drivesdk",
            f"https://drive.google.com/open?id={file_id}",
            f"https://drive.google.com/uc?id={file_id}&authuser=0&export=download",
            f"https://drive.google.com/u/0/uc?export=download&confirm=t&id={file_id}",
        ]
    if ref.site == SiteType.DROPBOX:
        return [dropbox_direct_url(url), _dropbox_download_param(url)]
    if ref.site == SiteType.GENERIC:
        return [url]
    # Streaming hosts only answer HEAD with an HTML page.
    return []


def stream_url(url: str, ref: Optional[ResourceRef] = None) -> str:
    """Primary direct-download URL for the stream method."""
    ref = ref if ref is not None else match_resource(url)
    if ref is None:
        return url
    if ref.site == SiteType.GOOGLE_DRIVE:
        return _drive_direct(ref.identifier)
    if ref.site == SiteType.DROPBOX:
        return dropbox_direct_url(url)
    return url


def heavyweight_urls(url: str, ref: Optional[ResourceRef] = None) -> list[str]:
    """Ordered input URLs for the ffmpeg remux method."""
    ref = ref if ref is not None else match_resource(url)
    if ref is None:
        return [url]
    if ref.site == SiteType.GOOGLE_DRIVE:
        file_id = ref.identifier
        return [
            f"https://drive.usercontent.google.com/download?id={file_id}&export=download&authuser=0&confirm=t",
            f"https://drive.google.com/uc?export=download&id={file_id}&confirm=t",
            f"https://www.googleapis.com/drive/v3/files/{file_id}?alt=media",
        ]
    if ref.site == SiteType.DROPBOX:
        return [dropbox_direct_url(url)]
    return [url]
