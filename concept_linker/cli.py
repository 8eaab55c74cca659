"""Python command-line interface for the concept linker core.

供运维与调试使用：初始化数据库、补齐嵌入、查看状态、生成链接推荐、维护语义缓存。
结果以 JSON 输出到 stdout，日志输出到 stderr。
"""
from __future__ import annotations

import argparse
import json
import sys
import time

from concept_linker.config import (
    DEFAULT_CACHE_SIMILARITY_THRESHOLD,
    DEFAULT_MAIN_DB_FILE_NAME,
    DEFAULT_MAX_PROPOSALS,
    EMBEDDING_BATCH_SIZE,
    MAX_CANDIDATES_FOR_RERANK,
    SUPPORTED_PROVIDERS,
)
from concept_linker.config_loader import ConfigLoader
from concept_linker.embeddings.vector_index import initialize_vector_index
from concept_linker.errors import ConceptLinkerError
from concept_linker.llm.client import LLMClient
from concept_linker.llm.semantic_cache import clear_cache, get_cache_stats
from concept_linker.migration.normalize_vectors import normalize_vector_storage
from concept_linker.orchestrator.embed_pipeline import check_and_generate_missing, get_embedding_status
from concept_linker.orchestrator.link_proposer import ProposalContext, propose_links_for_concept
from concept_linker.utils.db import initialize_database, list_database_tables
from concept_linker.utils.logger import get_logger, init_logger

logger = get_logger(__name__)

ACTIONS = ("init-db", "status", "backfill", "propose", "clear-cache", "cache-stats", "normalize-vectors")


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Concept linker: 嵌入补齐、链接推荐与语义缓存维护")
    p.add_argument("action", choices=ACTIONS)
    p.add_argument("--db", default=DEFAULT_MAIN_DB_FILE_NAME, help="SQLite 数据库路径")
    p.add_argument("--config_dir", default=None, help="YAML 配置目录 (默认 ./config)")

    p.add_argument("--ai_provider", choices=SUPPORTED_PROVIDERS, default=None,
                   help="LLM 提供商，默认按已设置的 API Key 自动选择")
    p.add_argument("--ai_model_name", default=None)
    p.add_argument("--embedding_model", default=None)
    p.add_argument("--max_retries", type=int, default=1, help="网络错误/5xx 时的最大尝试次数")

    p.add_argument("--concept_id", default=None, help="propose: 源概念 id")
    p.add_argument("--max_proposals", type=int, default=DEFAULT_MAX_PROPOSALS)
    p.add_argument("--max_candidates", type=int, default=MAX_CANDIDATES_FOR_RERANK)
    p.add_argument("--no_cache", action="store_true", help="propose: 不使用语义缓存")
    p.add_argument("--cache_similarity_threshold", type=float, default=DEFAULT_CACHE_SIMILARITY_THRESHOLD)

    p.add_argument("--batch_size", type=int, default=EMBEDDING_BATCH_SIZE, help="backfill: 本批最多处理的概念数")

    p.add_argument("--provider", default=None, help="clear-cache: 只清理该 provider")
    p.add_argument("--model", default=None, help="clear-cache: 只清理该 model")

    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                   help="日志级别，默认为 INFO")
    return p


def _build_client(args: argparse.Namespace) -> LLMClient:
    return LLMClient(
        provider=args.ai_provider,
        model=args.ai_model_name,
        embedding_model=args.embedding_model,
        max_retries=args.max_retries,
    )


def _emit(payload) -> None:
    json.dump(payload, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")


def run(args: argparse.Namespace) -> int:
    initialize_database(args.db)

    if args.action == "init-db":
        _emit({"db": args.db, "tables": sorted(list_database_tables(args.db))})
    elif args.action == "status":
        _emit(get_embedding_status(args.db, args.embedding_model))
    elif args.action == "cache-stats":
        _emit(get_cache_stats(args.db))
    elif args.action == "clear-cache":
        _emit({"deleted": clear_cache(args.db, args.provider, args.model)})
    elif args.action == "normalize-vectors":
        _emit(normalize_vector_storage(args.db))
    elif args.action == "backfill":
        client = _build_client(args)
        model = args.embedding_model or client.get_embedding_model()
        index = initialize_vector_index(args.db, model)
        _emit(check_and_generate_missing(args.batch_size, args.db, model=model, llm_client=client, vector_index=index))
    elif args.action == "propose":
        if not args.concept_id:
            logger.error("propose 需要 --concept_id")
            return 2
        context = ProposalContext(
            db_path=args.db,
            llm_client=_build_client(args),
            config_loader=ConfigLoader(args.config_dir),
            embedding_model=args.embedding_model,
            use_cache=not args.no_cache,
            cache_similarity_threshold=args.cache_similarity_threshold,
            max_candidates=args.max_candidates,
        )
        proposals = propose_links_for_concept(args.concept_id, args.max_proposals, context)
        _emit([p.to_dict() for p in proposals])
    return 0


def main(argv: list[str] | None = None) -> int:  # pragma: no cover
    args = build_arg_parser().parse_args(argv)
    init_logger(args.log_level.upper())

    start_time = time.time()
    try:
        code = run(args)
    except ConceptLinkerError as exc:
        logger.error("执行 %s 失败: %s", args.action, exc)
        code = 1
    logger.info("流程完成，总耗时 %.2fs", time.time() - start_time)
    return code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
