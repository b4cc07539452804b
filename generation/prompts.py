"""
Prompt builders for every generative call.

Each prompt opens with a ``TASK: <kind>`` line. Writer and continuation
prompts carry ``TARGET LENGTH`` / ``REMAINING LENGTH`` lines and delimited
structure blocks so that replies can be traced back to the request.
"""

from __future__ import annotations

import math
from typing import List, Sequence

from core import Job, SectionHeading, SeoLink, SourceCandidate, WriterAssignment


STRUCTURE_START = "--- STRUCTURE START ---"
STRUCTURE_END = "--- STRUCTURE END ---"
DOCUMENT_START = "--- DOCUMENT START ---"
DOCUMENT_END = "--- DOCUMENT END ---"
CONTEXT_START = "--- PREVIOUS TEXT START ---"
CONTEXT_END = "--- PREVIOUS TEXT END ---"

USER_SOURCES_BANNER = "=== PRIORITY SOURCES (SUPPLIED BY THE CUSTOMER) ==="
DISCOVERED_SOURCES_BANNER = "=== ADDITIONAL SOURCES (WEB SEARCH) ==="
SOURCE_SEPARATOR = "\n\n------------------\n\n"
NO_SOURCES_NOTICE = (
    "NO EXTERNAL SOURCES ARE AVAILABLE. Write from general knowledge: accurate, "
    "substantive and specific, without inventing statistics or citations."
)

HTML_RULES = """HTML RULES:
1. Output clean HTML only: no <!DOCTYPE>, <html>, <head> or <body>, no markdown, no code fences.
2. Allowed tags: <h1>, <h2>, <h3>, <p>, <ul>, <ol>, <li>, <table>, <thead>, <tbody>, <tr>, <th>, <td>, <strong>, <em>, <a>.
3. Every <h2>/<h3> is followed by full paragraphs of real content (3-4 sentences each), never placeholders.
4. Never leave a sentence or a tag unfinished. End on a closed </p>, </ul>, </ol> or </table>."""


def _job_header(job: Job) -> str:
    return (
        f"TOPIC: {job.topic}\n"
        f"KIND: {job.kind_label}\n"
        f"LANGUAGE: {job.language.display_name}\n"
        f"GUIDELINES: {job.guidelines or 'none'}"
    )


def max_links_for_length(length: int) -> int:
    if length <= 2000:
        return 2
    if length <= 5000:
        return 3
    return 5


def build_query_prompt(job: Job) -> str:
    language = job.language.display_name
    return f"""TASK: search-query
Write one web search query for researching the text described below.

{_job_header(job)}

RULES:
1. The query must be in {language} only.
2. 5-7 words, key terms only.
3. Return only the query: no quotes, no labels, no explanation.

QUERY ({language}):"""


def build_selection_prompt(job: Job, candidates: Sequence[SourceCandidate], preview_chars: int) -> str:
    previews = []
    for number, candidate in enumerate(candidates, start=1):
        previews.append(
            f"SOURCE {number}:\n"
            f"URL: {candidate.url}\n"
            f"TOTAL LENGTH: {candidate.length} characters\n"
            f"PREVIEW (first {preview_chars} characters):\n"
            f"{candidate.text[:preview_chars]}"
        )
    joined = "\n\n==================\n\n".join(previews)
    return f"""TASK: source-selection
You evaluate web sources. Read the previews of {len(candidates)} scraped sources and choose the 3-8 best ones for writing the text below.

{_job_header(job)}

CRITERIA:
1. Topical relevance
2. Substance and rigor
3. Recency of information
4. Level of detail
5. Diversity of viewpoints
6. Exclude promotional or sales content and pages showing errors or access denials

SOURCES:
{joined}

ANSWER with the numbers of the chosen sources separated by commas (for example: 1,3,5,7) and nothing else."""


def build_structure_prompt(job: Job, section_limit: int, max_subsections: int) -> str:
    intro = (
        "2. An introduction paragraph (<p>, 300-500 characters)."
        if job.include_intro
        else "2. No introduction: go straight to the main sections."
    )
    return f"""TASK: structure
You are the content lead. Prepare the detailed HTML outline of the text below.

{_job_header(job)}
LENGTH: {job.length} characters

OUTLINE REQUIREMENTS:
1. Main title in <h1>.
{intro}
3. At most {section_limit} main sections in <h2>, each with at most {max_subsections} subsections in <h3>.
4. Under each heading, one short <p> saying what the section covers and roughly how many characters it gets.
5. A closing summary paragraph.
6. The sections must add up to {job.length} characters (±10%).

Return only the HTML outline, without code fences."""


def build_writer_plan_prompt(job: Job, writers: int) -> str:
    per_writer = job.length // writers
    first_label = "H1 + introduction + sections 1-2" if job.include_intro else "H1 + sections 1-2"
    return f"""TASK: writer-plan
You are the content lead. Split the outline of a long text into exactly {writers} consecutive parts, one per writer.

{_job_header(job)}
LENGTH: {job.length} characters
WRITERS: {writers}

Reply with VALID JSON only (no comments, no code fences):
{{
  "fullStructure": "<h1>Title</h1><h2>Section 1</h2>...<h2>Section N</h2><p>Conclusion</p>",
  "writerAssignments": [
    {{"writer": 1, "sections": "{first_label}", "structure": "<h1>...</h1><h2>...</h2>...", "targetLength": {per_writer}}},
    ...
    {{"writer": {writers}, "sections": "last sections + conclusion", "structure": "<h2>...</h2>...<p>Conclusion</p>", "targetLength": {per_writer}}}
  ]
}}

RULES:
1. "writerAssignments" contains EXACTLY {writers} objects, numbered 1 to {writers}.
2. Writer 1 gets the <h1>{', the introduction' if job.include_intro else ''} and the first sections; writer {writers} gets the last sections and the conclusion.
3. Every <h2>/<h3> of "fullStructure" appears in exactly one writer's "structure". No section is shared or repeated.
4. Each "structure" contains only that writer's headings, with one short <p> note under each.
5. "targetLength" values add up to {job.length}."""


def _link_placement(length: int, count: int) -> str:
    if length <= 2000:
        return "Link 1 at about 25% of the text, link 2 at about 75%."
    if length <= 5000:
        return "Link 1 at about 20% of the text, link 2 at about 50%, link 3 at about 80%."
    return f"Spread the links evenly, roughly every {length // max(1, count)} characters."


def build_seo_block(job: Job) -> str:
    """SEO rules; empty when the job has no keywords or links."""
    if not job.has_seo:
        return ""

    lines: List[str] = ["SEO REQUIREMENTS:"]
    if job.seo_keywords:
        primary = job.seo_keywords[0]
        lines.append("Keywords:")
        lines.extend(f"  {i}. \"{kw}\"" for i, kw in enumerate(job.seo_keywords, start=1))
        lines.append(
            f"- The primary keyword \"{primary}\" must appear in the <h1> or at the start of the first <p>, "
            "and 2-4 times in the whole text, naturally."
        )
        lines.append("- Spread the other keywords through headings and paragraphs; inflected forms and synonyms are fine.")
        lines.append("- No keyword stuffing and no repeated phrases next to each other.")

    if job.seo_links:
        limit = min(len(job.seo_links), max_links_for_length(job.length))
        lines.append("Links:")
        lines.extend(
            f"  {i}. <a href=\"{link.url}\">{link.anchor}</a>"
            for i, link in enumerate(job.seo_links, start=1)
        )
        lines.append(f"- Use at most {limit} of these links, in the given order.")
        lines.append("- Place each link in the middle of a <p>, inside a natural sentence.")
        lines.append("- Never in <h1>, <h2> or <h3>, never two links in one sentence, never next to each other.")
        lines.append("- Use the anchor text EXACTLY as given: do not change, shorten or extend it.")
        lines.append(f"- {_link_placement(job.length, limit)}")
    return "\n".join(lines)


def build_writer_prompt(
    job: Job,
    assignment: WriterAssignment,
    *,
    total_parts: int,
    sources: str,
    lists: int,
    tables: int,
    improvised: bool = False,
    previous_tail: str = "",
    completed_sections: Sequence[str] = (),
    include_seo: bool = False,
) -> str:
    target = assignment.target_length
    minimum = int(target * 0.9)
    maximum = int(target * 1.05)
    part = assignment.index
    first = part == 1
    last = part == total_parts

    blocks: List[str] = [
        "TASK: write",
        f"PART: {part}/{total_parts}",
        f"TARGET LENGTH: {target} characters",
        f"Write the full text of: {assignment.sections}. Aim for {target} characters (minimum {minimum}, maximum {maximum}).",
        _job_header(job),
    ]

    if total_parts > 1 and not first:
        done = "\n".join(f"  - {label}" for label in completed_sections) or "  - the beginning"
        blocks.append(
            f"You are writing part {part} of {total_parts}. Already written by previous writers:\n{done}\n"
            "Do not repeat these sections or their topics. Continue seamlessly from the previous text."
        )
        if previous_tail:
            blocks.append(f"{CONTEXT_START}\n{previous_tail}\n{CONTEXT_END}")

    if include_seo:
        seo = build_seo_block(job)
        if seo:
            blocks.append(seo)

    element_rules = []
    if lists > 0:
        element_rules.append(f"- At least {lists} list(s): <ul> or <ol> with 5-7 <li> items of full sentences.")
    if tables > 0:
        element_rules.append(f"- At least {tables} table(s) with <thead>/<tbody>, 4+ columns and 5-8 rows of real data.")
    if element_rules:
        blocks.append("REQUIRED ELEMENTS:\n" + "\n".join(element_rules))

    if first:
        opening = "Start with <h1>Full title of the text</h1>."
        if job.include_intro:
            opening += " Follow it with a full introduction paragraph (400-600 characters)."
        else:
            opening += " Go straight to the main content after the title."
    else:
        opening = "Do not add an <h1>. Start directly with your first section heading."
    blocks.append(f"{HTML_RULES}\n5. {opening}")

    if improvised:
        blocks.append(
            "STRUCTURE: plan it yourself. Use a few <h2> sections sized to the target length "
            "and finish with a short conclusion paragraph."
        )
    else:
        blocks.append(
            "STRUCTURE TO FILL WITH FULL CONTENT (a plan, not text to copy):\n"
            f"{STRUCTURE_START}\n{assignment.structure}\n{STRUCTURE_END}\n"
            "Write every heading above, in this order, with full content under each."
        )

    if last:
        blocks.append("This is the final part: finish with a conclusion.")
    blocks.append(
        "LENGTH: monitor your length. When you approach the target, finish the current section at a "
        f"natural point. Finishing at {int(target * 0.95)} characters is better than being cut off."
    )
    blocks.append(
        f"Write only in {job.language.display_name}. Do not copy from the sources; use your own words."
    )

    if sources:
        blocks.append(f"SOURCE MATERIAL:\n{sources}")
    else:
        blocks.append(NO_SOURCES_NOTICE)

    blocks.append(f"WRITE THE FULL TEXT FOR {assignment.sections} ({target} characters):")
    return "\n\n".join(blocks)


def build_continuation_prompt(
    job: Job,
    context_tail: str,
    missing: Sequence[SectionHeading],
    remaining_chars: int,
    *,
    is_last: bool,
) -> str:
    blocks = [
        "TASK: continue",
        f"REMAINING LENGTH: {max(0, remaining_chars)} characters",
        _job_header(job),
        "The text below was cut off by the output limit. Continue it exactly where it stops: "
        "do not repeat anything already written and do not restart the section.",
        f"{CONTEXT_START}\n{context_tail}\n{CONTEXT_END}",
    ]
    if missing:
        listed = "\n".join(f"- <h{h.level}>{h.text}</h{h.level}>" for h in missing)
        blocks.append(
            "MISSING SECTIONS (write exactly these headings next, in this order, with full content):\n"
            f"{listed}"
        )
    elif is_last:
        blocks.append("No sections are missing: write a natural closing for the text.")
    else:
        blocks.append("No sections are missing: finish the current section naturally and stop.")
    blocks.append(HTML_RULES)
    blocks.append(f"Write only in {job.language.display_name}. Output only the continuation HTML:")
    return "\n\n".join(blocks)


def build_ending_check_prompt(ending: str) -> str:
    return f"""TASK: ending-check
Below are the last characters of a generated HTML text. Decide whether the final sentence is grammatically complete and not cut mid-word.

{DOCUMENT_START}
{ending}
{DOCUMENT_END}

Reply with JSON only: {{"complete": true, "trim_chars": 0}}
If the ending is incomplete, set "complete" to false and "trim_chars" to how many trailing characters should be removed."""


def build_link_repair_prompt(job: Job, document: str, missing: Sequence[SeoLink]) -> str:
    listed = "\n".join(f"- <a href=\"{link.url}\">{link.anchor}</a>" for link in missing)
    return f"""TASK: link-repair
Insert the missing links into the HTML text below.

MISSING LINKS:
{listed}

RULES:
1. Place each link in the middle of an existing <p>, inside a sentence where it fits naturally.
2. Never inside <h1>, <h2> or <h3>, never two links next to each other or in one sentence.
3. Use the anchor text exactly as given; do not change, shorten or extend it.
4. Keep every other character of the text verbatim: do not rewrite, shorten or remove anything, including existing links.
5. Write in {job.language.display_name}. Return the complete HTML text only, without code fences.

{DOCUMENT_START}
{document}
{DOCUMENT_END}"""


def token_ceiling(
    chars: int,
    *,
    chars_per_token: float = 4.0,
    margin: float = 1.85,
    floor: int = 1_000,
    ceiling: int = 64_000,
) -> int:
    """Output token limit for a request expected to produce ``chars`` characters."""
    estimate = math.ceil(max(0, chars) / max(chars_per_token, 0.1) * margin)
    return max(floor, min(ceiling, estimate))
