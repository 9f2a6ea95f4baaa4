"""Query registry: cache-key builders and the static table of boot queries.

Every key builder is a pure function of the viewer id plus any query
parameters, and every key carries the viewer id, so two viewers never share
an entry. The first key element is the query area; the persistence whitelist
and the staleness overrides are both keyed on it.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Protocol

from bootcache.errors import BootCacheError, ErrorCode
from bootcache.models.registry import QueryDescriptor, RegistryIndexes

if TYPE_CHECKING:
    from bootcache.config import StalenessSettings
    from bootcache.media import MediaWarmer
    from bootcache.models.cache import QueryKey

# Query names
FEED = "feed"
PROFILE = "profile"
STORIES = "stories"
UNREAD_MESSAGES = "unread_messages"
NOTIFICATION_BADGES = "notification_badges"
CONVERSATIONS = "conversations"
ACTIVITIES = "activities"
FILTERED_INBOX = "filtered_inbox"
PROFILE_POSTS = "profile_posts"
BOOKMARKS = "bookmarks"
EVENTS = "events"
NOTIFICATIONS = "notifications"
MY_EVENTS = "my_events"
LIKED_EVENTS = "liked_events"
MESSAGES = "messages"

# Above-the-fold areas probed by the cache-status detector.
PROBE_QUERIES = (
    FEED,
    PROFILE,
    UNREAD_MESSAGES,
    NOTIFICATION_BADGES,
    EVENTS,
    PROFILE_POSTS,
    ACTIVITIES,
    STORIES,
)

ACTIVITY_LIMIT = 50
NOTIFICATION_LIMIT = 50
EVENTS_LIMIT = 20


class RemoteApi(Protocol):
    """Remote data functions the boot queries call. Each may raise on failure."""

    async def get_feed_page(self, page: int) -> Any: ...
    async def get_profile(self, user_id: str) -> Any: ...
    async def get_stories(self) -> list[dict[str, Any]]: ...
    async def get_unread_count(self) -> int: ...
    async def get_spam_unread_count(self) -> int: ...
    async def get_notification_badges(self) -> Any: ...
    async def get_conversations(self) -> list[dict[str, Any]]: ...
    async def get_filtered_conversations(self, folder: str) -> list[dict[str, Any]]: ...
    async def get_notifications(self, limit: int) -> list[dict[str, Any]]: ...
    async def get_profile_posts(self, user_id: str) -> Any: ...
    async def get_bookmarks(self) -> Any: ...
    async def get_events(self, limit: int) -> Any: ...
    async def get_my_events(self) -> Any: ...
    async def get_liked_events(self, user_id: int) -> Any: ...
    async def get_messages(self, conversation_id: str) -> Any: ...


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------


def feed_key(viewer_id: str) -> QueryKey:
    return ("posts", "feed", "infinite", viewer_id)


def profile_key(viewer_id: str) -> QueryKey:
    return ("profile", viewer_id)


def stories_key(viewer_id: str) -> QueryKey:
    return ("stories", "list", viewer_id)


def unread_messages_key(viewer_id: str) -> QueryKey:
    return ("messages", "unreadCount", viewer_id)


def notification_badges_key(viewer_id: str) -> QueryKey:
    return ("badges", viewer_id)


def conversations_key(viewer_id: str) -> QueryKey:
    return ("messages", "conversations", viewer_id)


def filtered_inbox_key(viewer_id: str, folder: str = "primary") -> QueryKey:
    return ("messages", "filtered", folder, viewer_id)


def activities_key(viewer_id: str) -> QueryKey:
    return ("activities", viewer_id)


def profile_posts_key(viewer_id: str) -> QueryKey:
    return ("profilePosts", viewer_id)


def bookmarks_key(viewer_id: str) -> QueryKey:
    return ("bookmarks", "list", viewer_id)


def events_key(viewer_id: str) -> QueryKey:
    return ("events", "list", viewer_id)


def notifications_key(viewer_id: str) -> QueryKey:
    return ("notifications", "list", viewer_id)


def my_events_key(viewer_id: str) -> QueryKey:
    return ("events", "mine", viewer_id)


def liked_events_key(viewer_id: str) -> QueryKey:
    return ("events", "liked", viewer_id)


def messages_key(viewer_id: str, conversation_id: str) -> QueryKey:
    return ("messages", "history", viewer_id, conversation_id)


def numeric_viewer_id(viewer_id: str) -> int | None:
    """Some endpoints take the integer form of the viewer id."""
    return int(viewer_id) if viewer_id.isdigit() else None


# ---------------------------------------------------------------------------
# Value shaping
# ---------------------------------------------------------------------------


def notification_to_activity(notification: dict[str, Any]) -> dict[str, Any] | None:
    """Turn a raw notification into an activity row. Malformed input yields None."""
    if not isinstance(notification, dict) or not notification.get("id"):
        return None
    sender = notification.get("sender") or {}
    post = notification.get("post")
    event = notification.get("event")
    return {
        "id": str(notification["id"]),
        "type": notification.get("type") or "like",
        "user": {
            "id": sender.get("id") or "",
            "username": sender.get("username") or "user",
            "avatar": sender.get("avatar") or "",
        },
        "entity_type": notification.get("entityType"),
        "entity_id": notification.get("entityId"),
        "post": (
            {"id": str(post.get("id") or ""), "thumbnail": post.get("thumbnail") or ""}
            if isinstance(post, dict)
            else None
        ),
        "event": (
            {"id": str(event.get("id") or ""), "title": event.get("title")}
            if isinstance(event, dict)
            else None
        ),
        "comment": notification.get("content"),
        "is_read": bool(notification.get("readAt")),
        "created_at": notification.get("createdAt"),
    }


def story_image_urls(stories: Any) -> list[str]:
    """Latest thumbnail of each story plus every full-size item url."""
    urls: list[str] = []
    if not isinstance(stories, list):
        return urls
    for story in stories:
        items = (story.get("items") or []) if isinstance(story, dict) else []
        if items:
            latest = items[-1] or {}
            thumb = latest.get("thumbnail") or latest.get("url")
            if thumb:
                urls.append(thumb)
        for item in items:
            if item and item.get("url"):
                urls.append(item["url"])
    return urls


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def build_registry(
    api: RemoteApi,
    staleness: StalenessSettings,
    media: MediaWarmer | None = None,
) -> RegistryIndexes:
    """Build the static query table for one API client."""

    def budget(area: str) -> float:
        return staleness.budget_for(area)

    async def fetch_feed() -> dict[str, Any]:
        first = await api.get_feed_page(0)
        return {"pages": [first], "page_params": [0]}

    async def fetch_unread() -> dict[str, int]:
        inbox, spam = await asyncio.gather(api.get_unread_count(), api.get_spam_unread_count())
        return {"inbox": inbox, "spam": spam}

    async def fetch_activities() -> list[dict[str, Any]]:
        raw = await api.get_notifications(ACTIVITY_LIMIT)
        activities = (notification_to_activity(n) for n in raw or [])
        return [a for a in activities if a is not None]

    def warm_story_images(stories: Any) -> None:
        if media is None:
            return
        urls = story_image_urls(stories)
        if urls:
            media.prefetch(urls)

    descriptors = [
        # Lane 0: above the fold
        QueryDescriptor(FEED, feed_key, lambda v: fetch_feed, budget("posts"), 0),
        QueryDescriptor(
            PROFILE, profile_key, lambda v: lambda: api.get_profile(v), budget("profile"), 0
        ),
        QueryDescriptor(
            STORIES,
            stories_key,
            lambda v: api.get_stories,
            budget("stories"),
            0,
            on_success=warm_story_images,
        ),
        # Lane 1: tab bar badges
        QueryDescriptor(
            UNREAD_MESSAGES, unread_messages_key, lambda v: fetch_unread, budget("messages"), 1
        ),
        QueryDescriptor(
            NOTIFICATION_BADGES,
            notification_badges_key,
            lambda v: api.get_notification_badges,
            budget("badges"),
            1,
        ),
        # Lane 2: adjacent tabs
        QueryDescriptor(
            CONVERSATIONS,
            conversations_key,
            lambda v: api.get_conversations,
            budget("messages"),
            2,
        ),
        QueryDescriptor(
            ACTIVITIES, activities_key, lambda v: fetch_activities, budget("activities"), 2
        ),
        QueryDescriptor(
            FILTERED_INBOX,
            filtered_inbox_key,
            lambda v: lambda: api.get_filtered_conversations("primary"),
            budget("messages"),
            2,
        ),
        # Lane 3: secondary tabs
        QueryDescriptor(
            PROFILE_POSTS,
            profile_posts_key,
            lambda v: lambda: api.get_profile_posts(v),
            budget("profilePosts"),
            3,
        ),
        QueryDescriptor(
            BOOKMARKS, bookmarks_key, lambda v: api.get_bookmarks, budget("bookmarks"), 3
        ),
        QueryDescriptor(
            EVENTS,
            events_key,
            lambda v: lambda: api.get_events(EVENTS_LIMIT),
            budget("events"),
            3,
        ),
        QueryDescriptor(
            NOTIFICATIONS,
            notifications_key,
            lambda v: lambda: api.get_notifications(NOTIFICATION_LIMIT),
            budget("notifications"),
            3,
        ),
        QueryDescriptor(MY_EVENTS, my_events_key, lambda v: api.get_my_events, budget("events"), 3),
        QueryDescriptor(
            LIKED_EVENTS,
            liked_events_key,
            lambda v: lambda: api.get_liked_events(int(v)),
            budget("events"),
            3,
            applies_to=lambda v: numeric_viewer_id(v) is not None,
        ),
        # Lane 4: derived from the conversation list
        QueryDescriptor(
            MESSAGES,
            messages_key,
            lambda v, conversation_id: lambda: api.get_messages(conversation_id),
            budget("messages"),
            4,
        ),
    ]
    return build_indexes(descriptors)


def build_indexes(descriptors: list[QueryDescriptor]) -> RegistryIndexes:
    indexes = RegistryIndexes()
    for descriptor in descriptors:
        if descriptor.name in indexes.by_name:
            raise ValueError(f"Duplicate query name: {descriptor.name!r}")
        indexes.by_name[descriptor.name] = descriptor
        indexes.by_lane.setdefault(descriptor.lane, []).append(descriptor)
    return indexes


def require(indexes: RegistryIndexes, name: str) -> QueryDescriptor:
    descriptor = indexes.get(name)
    if descriptor is None:
        raise BootCacheError(ErrorCode.UNKNOWN_QUERY, f"Unknown query: {name!r}")
    return descriptor
