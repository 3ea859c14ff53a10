# feedpilot/providers/prompts.py
from typing import Sequence

from ..batching import truncate

SYSTEM_PROMPT = (
    "You are a concise news assistant. Use only the text you are given, "
    "never fetch URLs, and follow the requested output format exactly."
)

BATCH_SUMMARY_CHARS = 3000
BATCH_SCORE_CHARS = 1000
TAGS_CHARS = 4000
STYLE_CHARS = 2000

SUMMARY_MAX_CHARS = 300


def batch_summary_prompt(articles: Sequence, language: str) -> str:
    parts = [
        f"Below are multiple articles. For EACH article, provide a 2-3 sentence summary "
        f"(max {SUMMARY_MAX_CHARS} characters) in {language}.\n"
        "Do NOT fetch any URLs. Use ONLY the text provided.\n"
        "Format your response EXACTLY as follows, with each summary on its own line:\n"
        "[ARTICLE_ID]: summary text here\n"
    ]
    for a in articles:
        parts.append(f"---ARTICLE [{a.id}]: {a.title}---\n{truncate(a.content, BATCH_SUMMARY_CHARS)}\n")
    parts.append(
        f"Now provide summaries in {language} (max {SUMMARY_MAX_CHARS} chars each) "
        "using the format [ARTICLE_ID]: summary"
    )
    return "\n".join(parts)


def tags_prompt(content: str) -> str:
    return (
        "Extract 3-5 topic tags from the article text below. "
        "Return ONLY the tags as a comma-separated list, nothing else. "
        "Do NOT try to fetch any URLs.\n\n"
        f"---BEGIN ARTICLE TEXT---\n{truncate(content, TAGS_CHARS)}\n---END ARTICLE TEXT---\n\n"
        "Tags:"
    )


def batch_score_prompt(articles: Sequence, interests: Sequence[str]) -> str:
    parts = [
        f"Rate how relevant each article is to someone interested in: {', '.join(interests)}.\n"
        "For EACH article, respond with a score from 0 to 100.\n"
        "Format your response EXACTLY as follows, one per line:\n"
        "[ARTICLE_ID]: score\n"
    ]
    for a in articles:
        parts.append(f"---ARTICLE [{a.id}]---\n{truncate(a.text, BATCH_SCORE_CHARS)}\n")
    parts.append("Now provide scores using the format [ARTICLE_ID]: score")
    return "\n".join(parts)


def style_prompt(content: str) -> str:
    return (
        "Classify this article's style. Respond with ONLY valid JSON (no markdown, no code blocks):\n"
        '{"style_type": "tutorial|news|opinion|analysis|review", '
        '"tone": "formal|casual|technical|humorous", '
        '"length_category": "short|medium|long"}\n\n'
        "Choose the most appropriate value for each field based on the article content.\n\n"
        f"Article:\n{truncate(content, STYLE_CHARS)}"
    )
