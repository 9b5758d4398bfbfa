"""Context assembly and answer generation.

ContextAssembler renders a GraphRAGContext into one markdown document with
a fixed section order. KnowledgeAssistant runs the engine, short-circuits
when nothing was retrieved, and otherwise asks the LLM collaborator.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from pydantic import BaseModel

from src.brain.llm import LLMClient
from src.brain.models import GraphRAGContext, KnowledgeSearchResult, MeetingContext
from src.brain.rag.graph_rag import GraphRAGEngine

logger = structlog.get_logger(__name__)

NO_RELEVANT_INFORMATION = (
    "I couldn't find any relevant information in your knowledge base to answer this question.\n"
    "\n"
    "**Possible reasons:**\n"
    "- Your knowledge base might be empty. Try adding some content first "
    "(documents, notes, or meeting transcripts).\n"
    "- The question might not match any stored content. Try rephrasing or "
    "adding more relevant content."
)

LLM_UNAVAILABLE_PREFIX = (
    "I couldn't generate an answer right now, but here is what I found in your knowledge base:"
)

ANSWER_PROMPT = """You are Second Brain, a personal assistant with access to the user's meeting history, knowledge base, and documents.

RETRIEVED CONTEXT:
{context}

USER QUESTION: {question}

RESPONSE GUIDELINES:
1. Start with a brief, direct answer (1-2 sentences), then supporting details.
2. Use **bold** for meeting names, people, and document titles.
3. List action items with their owners: "- [ ] Task (Owner)".
4. Cite sources naturally: "In the **Project Review** meeting...".
5. Say what you could not find instead of guessing.

The "Potentially Relevant Documents" section was retrieved by similarity
search. Those documents were NOT discussed in meetings; never claim they
were. Suggest them as "You may find **Title** relevant".

ANSWER:"""

MEETING_PREVIEW_LIMIT = 3
SEGMENT_PREVIEW_LIMIT = 2
SEGMENT_PREVIEW_CHARS = 100
ACTION_ITEM_LIMIT = 5
DECISION_LIMIT = 5
EXCERPT_CHARS = 300


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


class ContextAssembler:
    """Renders a GraphRAGContext as sectioned markdown.

    Sections appear in this order and are omitted when empty: temporal
    reference, query entities, related meetings, related people, related
    topics, open action items, recent decisions, similar documents.
    """

    def render(self, context: GraphRAGContext) -> str:
        parts: list[str] = []

        if context.temporal is not None:
            parts.append(
                f"## Temporal Reference Detected\nTime reference: {context.temporal.phrase}\n"
            )

        if context.entities:
            entities = ", ".join(f"{e.text} ({e.label})" for e in context.entities)
            parts.append(f"## Entities Mentioned in Query\n{entities}\n")

        if context.meetings:
            meetings = "\n\n".join(
                self._render_meeting(m) for m in context.meetings[:MEETING_PREVIEW_LIMIT]
            )
            parts.append(f"## Related Meetings\n{meetings}\n")

        if context.people:
            lines = []
            for person in context.people:
                topics = ", ".join(person.recent_topics) or "No topics recorded"
                lines.append(
                    f"- **{person.name}** (last seen {person.last_seen_days_ago} days ago): "
                    f"discusses {topics}"
                )
            parts.append("## Related People\n" + "\n".join(lines) + "\n")

        if context.topics:
            lines = []
            for topic in context.topics:
                people = ", ".join(topic.related_people) or "various participants"
                lines.append(
                    f"- **{topic.name}**: mentioned {topic.mention_count} times, "
                    f"last {topic.last_mentioned_days_ago} days ago (discussed by: {people})"
                )
            parts.append("## Related Topics\n" + "\n".join(lines) + "\n")

        if context.action_items:
            lines = [
                f"- {item.text} (assigned to: {item.assignee or 'Unassigned'})"
                for item in context.action_items[:ACTION_ITEM_LIMIT]
            ]
            parts.append("## Open Action Items\n" + "\n".join(lines) + "\n")

        if context.decisions:
            lines = [f"- {d.text}" for d in context.decisions[:DECISION_LIMIT]]
            parts.append("## Recent Decisions\n" + "\n".join(lines) + "\n")

        if context.knowledge:
            hits = "\n".join(self._render_hit(hit) for hit in context.knowledge)
            parts.append(
                "## Potentially Relevant Documents "
                f"(from Knowledge Base - NOT mentioned in meetings)\n{hits}\n"
            )

        return "\n".join(parts)

    @staticmethod
    def _render_meeting(meeting: MeetingContext) -> str:
        previews = [
            f'  - {s.speaker}: "{_truncate(s.text, SEGMENT_PREVIEW_CHARS)}"'
            for s in meeting.segments[:SEGMENT_PREVIEW_LIMIT]
        ]
        header = f"**{meeting.meeting.title}** ({meeting.days_ago} days ago)"
        return "\n".join([header, *previews])

    @staticmethod
    def _render_hit(hit: KnowledgeSearchResult) -> str:
        excerpt = _truncate(hit.text, EXCERPT_CHARS).replace("\n", "\n> ")
        return (
            f"### {hit.source_title} ({hit.similarity * 100:.0f}% similarity)\n"
            f"URL: {hit.source_url}\n"
            f"> {excerpt}\n"
        )


class AssistantAnswer(BaseModel):
    """Answer to one question.

    Attributes:
        answer: Text shown to the user.
        context: The retrieval bundle the answer was built from.
        rendered_context: The markdown sent to the LLM ("" when skipped).
        used_llm: Whether the LLM collaborator produced the answer.
        llm_error: The LLM failure message, when the fallback was used.
    """

    answer: str
    context: GraphRAGContext
    rendered_context: str = ""
    used_llm: bool = False
    llm_error: str | None = None


class KnowledgeAssistant:
    """Question answering over the knowledge store.

    Args:
        engine: Graph-RAG engine producing the retrieval bundle.
        llm: LLM collaborator with an async ainvoke(prompt) method.
        assembler: Context renderer; defaults to ContextAssembler().
    """

    def __init__(
        self,
        engine: GraphRAGEngine,
        llm: LLMClient,
        assembler: ContextAssembler | None = None,
    ) -> None:
        self._engine = engine
        self._llm = llm
        self._assembler = assembler or ContextAssembler()

    async def ask(self, question: str, now: datetime | None = None) -> AssistantAnswer:
        """Answer question from retrieved context.

        An empty bundle returns NO_RELEVANT_INFORMATION without calling the
        LLM. An LLM failure returns the rendered context behind a short
        notice, with llm_error set.
        """
        context = await self._engine.query(question, now=now)
        if context.is_empty:
            logger.info("assistant.no_context", question_chars=len(question))
            return AssistantAnswer(answer=NO_RELEVANT_INFORMATION, context=context)

        rendered = self._assembler.render(context)
        prompt = ANSWER_PROMPT.format(context=rendered, question=question)
        try:
            answer = await self._llm.ainvoke(prompt)
        except Exception as exc:
            logger.warning("assistant.llm_failed", error=str(exc), exc_info=True)
            return AssistantAnswer(
                answer=f"{LLM_UNAVAILABLE_PREFIX}\n\n{rendered}",
                context=context,
                rendered_context=rendered,
                llm_error=str(exc),
            )

        return AssistantAnswer(
            answer=answer,
            context=context,
            rendered_context=rendered,
            used_llm=True,
        )
