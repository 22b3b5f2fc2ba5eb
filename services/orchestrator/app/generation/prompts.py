"""Prompts used for story planning, chapter writing and page illustration."""

from __future__ import annotations

STORY_BIBLE_SYSTEM_PROMPT = """
You are a meticulous continuity editor. You read the chapters of a novel written so far and
record only facts that are established in the text. Never invent events.
""".strip()

STORY_BIBLE_PROMPT = """
Chapters written so far:
{previous_text}

Summarise the story for the author of the next chapter. Capture the plot so far, how each
character has developed, important objects, unresolved plot threads and any rules of the
world. Respond using the provided JSON schema.
""".strip()

FIRST_CHAPTER_SUMMARY = "This is the first chapter."

CHAPTER_PLAN_SYSTEM_PROMPT = """
You are a story architect. You break a single chapter into a small number of concrete
narrative beats that move the plot forward while keeping continuity with earlier chapters.
""".strip()

CHAPTER_PLAN_PROMPT = """
Story parameters:
{parameters_json}

Story bible:
{bible_json}

Plan chapter {chapter_number} of {total_chapters}.
{position_note}
Additional guidance from the author: {guidance}

Return between 3 and 5 beats, numbered from 1. Respond using the provided JSON schema.
""".strip()

CHAPTER_WRITER_SYSTEM_PROMPT = """
You are a novelist writing one chapter at a time. Write vivid, continuous prose with no
headings, notes or commentary. Honour the beat plan in order and keep every established fact.
""".strip()

CHAPTER_WRITER_PROMPT = """
Story parameters:
{parameters_json}

Story bible:
{bible_json}

Most recent chapters:
{previous_text}

Beat plan for chapter {chapter_number} of {total_chapters}:
{plan_json}

Write the full chapter in roughly {target_words} words.
{position_note}
Additional guidance from the author: {guidance}
""".strip()

MIDDLE_CHAPTER_NOTE = (
    "This is not the final chapter: do not resolve the main conflict or write an ending."
)
FINAL_CHAPTER_NOTE = "This is the final chapter: resolve the main conflict and close the story."

STORY_PLAN_SYSTEM_PROMPT = """
You are a picture book author. Every page carries one or two short sentences for young
readers and one illustration that shows exactly what the text describes.
""".strip()

STORY_PLAN_PROMPT = """
Story parameters:
{parameters_json}

Main character:
{character_json}

Write a complete picture book of exactly {page_count} pages. For every page give the page
text and a detailed illustration prompt that describes the scene, the character's pose and
expression, and the setting. Respond using the provided JSON schema.
""".strip()

PAGE_ILLUSTRATION_PROMPT = """
{art_style} children's book illustration, landscape composition, no text or lettering.
Main character: {character_name}, {character_description}.
Scene: {illustration_prompt}
{guidance}
""".strip()
