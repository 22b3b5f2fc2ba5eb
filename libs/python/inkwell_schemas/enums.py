"""Enum definitions shared across workflows."""

from __future__ import annotations

from enum import Enum


class BookType(str, Enum):
    TEXT_BOOK = "textBook"
    PICTURE_BOOK = "pictureBook"


class ProjectStatus(str, Enum):
    DRAFT = "draft"
    CHARACTER_READY = "character_ready"
    STORY_READY = "story_ready"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"
    FAILED = "failed"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    FULFILLMENT_FAILED = "fulfillment_failed"


class JobType(str, Enum):
    SEQUENTIAL_UNIT = "sequential-unit"
    FAN_OUT_UNIT = "fan-out-unit"
    SINGLE_REGENERATION = "single-regeneration"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ProjectCounter(str, Enum):
    LIKES = "like_count"
    COMMENTS = "comment_count"


class ShippingLevel(str, Enum):
    MAIL = "MAIL"
    PRIORITY_MAIL = "PRIORITY_MAIL"
    GROUND = "GROUND"
    EXPEDITED = "EXPEDITED"
    EXPRESS = "EXPRESS"
