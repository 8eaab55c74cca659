"""Two-stage link proposal: vector retrieval, then LLM rerank.

Retrieval pulls the nearest concepts to the source embedding from the
in-memory index (cheap, high recall). The rerank stage asks the LLM to judge
those candidates and justify each link with a confidence score; the JSON it
returns is untrusted and filtered entry by entry before anything reaches the
caller.

A missing source concept yields ``[]``. Config validation failures and
provider errors propagate; swallowing them is the calling layer's decision.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Dict, List

from concept_linker.config import (
    CONTENT_PREVIEW_CHARS,
    DEFAULT_CACHE_SIMILARITY_THRESHOLD,
    DEFAULT_LINK_NAMES,
    DEFAULT_MAIN_DB_FILE_NAME,
    DEFAULT_MAX_PROPOSALS,
    FALLBACK_LINK_NAME,
    LINK_CONFIDENCE_THRESHOLD,
    MAX_CANDIDATES_FOR_RERANK,
    MAX_CHARS_FOR_EMBEDDING,
)
from concept_linker.config_loader import ConfigLoader, get_config_loader
from concept_linker.db.queries import (
    get_active_link_names,
    get_concept,
    get_concepts_by_ids,
    get_inactive_concept_ids,
    get_linked_concept_ids,
)
from concept_linker.embeddings.vector_index import VectorIndex, get_vector_index
from concept_linker.errors import MalformedResponseError
from concept_linker.llm.client import LLMClient, get_llm_client
from concept_linker.llm.semantic_cache import get_cached_response, store_cached_response
from concept_linker.orchestrator.embed_pipeline import build_embedding_text, get_or_create_embedding
from concept_linker.utils.logger import get_logger
from concept_linker.utils.timer import timeit

logger = get_logger(__name__)

DEFAULT_SYSTEM_CONTEXT = (
    "You are analyzing relationships between concepts in a knowledge graph. "
    "Propose meaningful, typed links."
)

DEFAULT_USER_PROMPT_TEMPLATE = """Analyze the relationship between this concept and the candidate concepts below.

SOURCE CONCEPT:
Title: {{source_title}}
Description: {{source_description}}
Content Preview: {{source_content}}

CANDIDATE CONCEPTS:
{{candidates}}

AVAILABLE LINK NAMES: {{link_names}}

For each candidate concept, determine:
1. If there's a meaningful relationship (confidence 0.0-1.0)
2. The most appropriate link name from the available list
3. A brief reasoning

Return a JSON object with a "proposals" array:
{
  "proposals": [
    {
      "target_id": "concept-id",
      "forward_name": "link name",
      "confidence": 0.85,
      "reasoning": "Brief explanation"
    }
  ]
}

Only include proposals with confidence >= 0.5. Limit to {{max_proposals}} proposals."""


@dataclass
class LinkProposal:
    source_concept_id: str
    target_concept_id: str
    target_title: str
    forward_name: str
    confidence: float
    reasoning: str = ""

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class ProposalContext:
    """Collaborators for one proposal call; unset fields fall back to the process singletons."""

    db_path: str = DEFAULT_MAIN_DB_FILE_NAME
    llm_client: LLMClient | None = None
    config_loader: ConfigLoader | None = None
    vector_index: VectorIndex | None = None
    embedding_model: str | None = None
    use_cache: bool = True
    cache_similarity_threshold: float = DEFAULT_CACHE_SIMILARITY_THRESHOLD
    max_candidates: int = MAX_CANDIDATES_FOR_RERANK


# ---------------------------------------------------------------------------
# Prompt 构建
# ---------------------------------------------------------------------------


def _render_template(template: str, values: Dict[str, object]) -> str:
    for key, value in values.items():
        template = template.replace("{{" + key + "}}", str(value))
    return template


def _format_candidates(candidates: List[Dict]) -> str:
    blocks = []
    for idx, candidate in enumerate(candidates, start=1):
        blocks.append(
            f"{idx}. ID: {candidate['id']}\n"
            f"   Title: {candidate['title']}\n"
            f"   Content Preview: {(candidate.get('content') or '')[:CONTENT_PREVIEW_CHARS]}"
        )
    return "\n\n".join(blocks)


def build_link_prompt(
    source: Dict,
    candidates: List[Dict],
    link_names: List[str],
    max_proposals: int,
    config_loader: ConfigLoader,
) -> str:
    template = config_loader.get_prompt("linkProposer.userPromptTemplate", DEFAULT_USER_PROMPT_TEMPLATE)
    return _render_template(
        template,
        {
            "source_title": source["title"],
            "source_description": source.get("description") or "None",
            "source_content": (source.get("content") or "")[:CONTENT_PREVIEW_CHARS],
            "candidates": _format_candidates(candidates),
            "link_names": ", ".join(link_names),
            "max_proposals": max_proposals,
        },
    )


def build_rerank_cache_key(source: Dict, candidates: List[Dict], max_proposals: int) -> str:
    """语义缓存的查询文本：完整 prompt 会超过嵌入输入上限，只保留决定推荐结果的字段。

    max_proposals 与候选 id 放在最前，正文预览放在最后，超长时只截掉预览。"""
    key = (
        f"max_proposals: {max_proposals}\n"
        f"source: {source['id']}\n"
        f"candidates: {', '.join(str(c['id']) for c in candidates)}\n"
        f"title: {source['title']}\n"
        f"preview: {(source.get('content') or '')[:CONTENT_PREVIEW_CHARS]}"
    )
    return key[:MAX_CHARS_FOR_EMBEDDING]


def _available_link_names(db_path: str) -> List[str]:
    names = list(DEFAULT_LINK_NAMES)
    for name in get_active_link_names(db_path):
        if name not in names:
            names.append(name)
    return names


# ---------------------------------------------------------------------------
# 响应解析
# ---------------------------------------------------------------------------


def _coerce_proposal(entry: object, source_id: str, candidates: Dict[str, Dict]) -> LinkProposal | None:
    """把单条 LLM 输出转换为 LinkProposal；不合格时返回 None。"""
    if not isinstance(entry, dict):
        return None

    target_id = entry.get("target_id")
    if isinstance(target_id, bool) or not isinstance(target_id, (str, int)):
        return None
    target_id = str(target_id).strip()
    if not target_id or target_id == source_id:
        return None
    candidate = candidates.get(target_id)
    if candidate is None:
        return None

    confidence = entry.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return None
    confidence = float(confidence)
    if not math.isfinite(confidence) or not 0.0 <= confidence <= 1.0:
        return None

    forward_name = entry.get("forward_name")
    if not isinstance(forward_name, str) or not forward_name.strip():
        forward_name = FALLBACK_LINK_NAME
    reasoning = entry.get("reasoning")
    if not isinstance(reasoning, str):
        reasoning = ""

    return LinkProposal(
        source_concept_id=source_id,
        target_concept_id=target_id,
        target_title=candidate["title"],
        forward_name=forward_name.strip(),
        confidence=confidence,
        reasoning=reasoning.strip(),
    )


def parse_link_proposals(response: object, source_id: str, candidates: Dict[str, Dict]) -> List[LinkProposal]:
    """防御式解析 {"proposals": [...]}；格式不正确的条目静默丢弃，同一目标只保留置信度最高的一条。"""
    if not isinstance(response, dict):
        logger.warning("链接推荐响应不是 JSON 对象，按无推荐处理")
        return []
    raw_proposals = response.get("proposals")
    if not isinstance(raw_proposals, list):
        logger.warning("链接推荐响应缺少 proposals 数组，按无推荐处理")
        return []

    by_target: Dict[str, LinkProposal] = {}
    dropped = 0
    for entry in raw_proposals:
        proposal = _coerce_proposal(entry, source_id, candidates)
        if proposal is None:
            dropped += 1
            continue
        current = by_target.get(proposal.target_concept_id)
        if current is None or proposal.confidence > current.confidence:
            by_target[proposal.target_concept_id] = proposal

    if dropped:
        logger.debug("丢弃 %s 条格式不正确的推荐", dropped)
    return list(by_target.values())


def rank_proposals(proposals: List[LinkProposal], max_proposals: int) -> List[LinkProposal]:
    """过滤低置信度，按置信度降序排序（不信任 LLM 的输出顺序）并截断。"""
    kept = [p for p in proposals if p.confidence >= LINK_CONFIDENCE_THRESHOLD]
    kept.sort(key=lambda p: (-p.confidence, p.target_concept_id))
    return kept[: max(0, max_proposals)]


# ---------------------------------------------------------------------------
# 主流程
# ---------------------------------------------------------------------------


def _retrieve_candidates(
    db_path: str,
    source_id: str,
    vector: List[float],
    index: VectorIndex,
    max_candidates: int,
) -> List[Dict]:
    excluded = {source_id}
    excluded |= get_linked_concept_ids(db_path, source_id)
    excluded |= get_inactive_concept_ids(db_path)

    hits = index.query(vector, max_candidates, exclude_ids=excluded)
    rows = get_concepts_by_ids(db_path, [hit["concept_id"] for hit in hits])
    candidates = []
    for hit in hits:
        row = rows.get(hit["concept_id"])
        # 索引可能滞后于已删除的概念
        if row is None:
            continue
        candidates.append({**row, "similarity": hit["similarity"]})
    return candidates


def _rerank(
    prompt: str,
    system_prompt: str,
    cache_key: str,
    client: LLMClient,
    ctx: ProposalContext,
) -> Dict | None:
    provider, model_name = client.get_provider(), client.get_model()

    if ctx.use_cache:
        cached = get_cached_response(
            ctx.db_path,
            cache_key,
            provider,
            model_name,
            similarity_threshold=ctx.cache_similarity_threshold,
            llm_client=client,
        )
        if cached is not None:
            logger.info("链接推荐命中语义缓存 (%s/%s)", provider, model_name)
            return cached

    try:
        response = client.complete_json(prompt, system_prompt)
    except MalformedResponseError as exc:
        logger.warning("LLM 返回内容无法解析为 JSON，按无推荐处理: %s", exc)
        return None

    if ctx.use_cache:
        store_cached_response(ctx.db_path, cache_key, response, provider, model_name, llm_client=client)
    return response


@timeit
def propose_links_for_concept(
    source_id: str,
    max_proposals: int = DEFAULT_MAX_PROPOSALS,
    context: ProposalContext | None = None,
) -> List[LinkProposal]:
    """为概念生成排序后的链接推荐列表。"""
    ctx = context or ProposalContext()
    db_path = ctx.db_path

    source = get_concept(db_path, source_id)
    if source is None:
        logger.warning("源概念 %s 不存在，返回空推荐", source_id)
        return []

    config = ctx.config_loader or get_config_loader()
    config.validate_config_for_content_generation()

    client = ctx.llm_client or get_llm_client()
    model = ctx.embedding_model or client.get_embedding_model()
    index = ctx.vector_index or get_vector_index()
    if not index.is_initialized or index.model != model:
        index.initialize(db_path, model)

    vector = get_or_create_embedding(
        source_id,
        build_embedding_text(source),
        db_path,
        model=model,
        llm_client=client,
        vector_index=index,
    )

    candidates = _retrieve_candidates(db_path, source_id, vector, index, ctx.max_candidates)
    if not candidates:
        logger.info("概念 %s 没有可推荐的候选概念", source_id)
        return []
    logger.debug("概念 %s 检索到 %s 个候选", source_id, len(candidates))

    prompt = build_link_prompt(source, candidates, _available_link_names(db_path), max_proposals, config)
    system_prompt = config.get_system_prompt(
        config.get_prompt("linkProposer.systemPrompt", DEFAULT_SYSTEM_CONTEXT)
    )

    cache_key = build_rerank_cache_key(source, candidates, max_proposals)
    response = _rerank(prompt, system_prompt, cache_key, client, ctx)
    if response is None:
        return []

    candidates_by_id = {c["id"]: c for c in candidates}
    proposals = rank_proposals(parse_link_proposals(response, source_id, candidates_by_id), max_proposals)

    logger.info(
        "概念 %s 生成 %s 条链接推荐 (候选 %s)", source_id, len(proposals), len(candidates)
    )
    return proposals


__all__ = [
    "LinkProposal",
    "ProposalContext",
    "build_link_prompt",
    "build_rerank_cache_key",
    "parse_link_proposals",
    "rank_proposals",
    "propose_links_for_concept",
]
