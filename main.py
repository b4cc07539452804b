"""CLI entrypoint for order submission, workers and job status."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from uuid import uuid4

from pydantic import ValidationError

from core import Job, Order, SeoLink, UserSources
from orchestrator import get_default_orchestrator
from utils.exceptions import LongformError
from utils.logger import setup_package_logging


def _json(text: str):
    raw = str(text or "").strip()
    if not raw:
        return {}
    return json.loads(raw)


def _csv(text: str):
    return [item.strip() for item in str(text or "").split(",") if item.strip()]


async def _run_and_close(orchestrator, coro):
    try:
        return await coro
    finally:
        await orchestrator.aclose()


def _order_from_args(args: argparse.Namespace) -> Order:
    if args.order_file:
        payload = json.loads(Path(args.order_file).read_text(encoding="utf-8"))
        return Order.model_validate(payload)

    order_id = f"order_{uuid4().hex[:10]}"
    links = [SeoLink(**item) for item in _json(args.links_json or "[]")]
    urls = _csv(args.source_urls)
    job = Job(
        job_id=f"job_{uuid4().hex[:10]}",
        order_id=order_id,
        topic=args.topic,
        length=int(args.length),
        language=args.language,
        text_type=args.text_type,
        custom_type=args.custom_type or None,
        guidelines=args.guidelines,
        seo_keywords=_csv(args.keywords),
        seo_links=links,
        user_sources=UserSources(urls=urls) if urls else None,
    )
    return Order(order_id=order_id, order_number=args.order_number or order_id, user_email=args.email, jobs=[job])


def main() -> None:
    parser = argparse.ArgumentParser(description="Longform writer CLI")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    submit = sub.add_parser("submit")
    submit.add_argument("--order-file", default="", help="JSON order document")
    submit.add_argument("--topic", default="")
    submit.add_argument("--length", type=int, default=2000)
    submit.add_argument("--language", default="en")
    submit.add_argument("--text-type", default="article")
    submit.add_argument("--custom-type", default="")
    submit.add_argument("--guidelines", default="")
    submit.add_argument("--keywords", default="", help="comma-separated")
    submit.add_argument("--links-json", default="", help='[{"url": ..., "anchor": ...}]')
    submit.add_argument("--source-urls", default="", help="comma-separated")
    submit.add_argument("--order-number", default="")
    submit.add_argument("--email", default=None)

    sub.add_parser("worker-run-next")

    status = sub.add_parser("status")
    status.add_argument("--job-id", default="")
    status.add_argument("--order-id", default="")

    retry = sub.add_parser("retry")
    retry.add_argument("--job-id", required=True)

    args = parser.parse_args()
    setup_package_logging(level=getattr(logging, str(args.log_level).upper(), logging.INFO))
    orchestrator = get_default_orchestrator()

    if args.command == "submit":
        if not args.order_file and not str(args.topic).strip():
            parser.error("submit needs --order-file or --topic")
        try:
            order = _order_from_args(args)
        except (ValidationError, ValueError, TypeError, OSError) as exc:
            parser.error(f"invalid order: {exc}")
        order = orchestrator.submit_order(order)
        print(
            json.dumps(
                {"order_id": order.order_id, "job_ids": [job.job_id for job in order.jobs]},
                ensure_ascii=False,
            )
        )
        return

    if args.command == "worker-run-next":
        order = asyncio.run(_run_and_close(orchestrator, orchestrator.process_next()))
        if not order:
            print(json.dumps({"processed": False}, ensure_ascii=False))
            return
        print(
            json.dumps(
                {"processed": True, **(orchestrator.get_order_status(order.order_id) or {})},
                ensure_ascii=False,
                default=str,
            )
        )
        return

    if args.command == "status":
        if not args.order_id and not args.job_id:
            parser.error("status needs --job-id or --order-id")
        try:
            if args.order_id:
                payload = orchestrator.get_order_status(args.order_id)
            else:
                payload = orchestrator.get_job_status(args.job_id)
        except LongformError as exc:
            payload = {"error": str(exc)}
        print(json.dumps(payload, ensure_ascii=False, default=str))
        return

    if args.command == "retry":
        try:
            record = asyncio.run(_run_and_close(orchestrator, orchestrator.retry_job(args.job_id)))
        except LongformError as exc:
            print(json.dumps({"job_id": args.job_id, "error": str(exc)}, ensure_ascii=False))
            return
        print(
            json.dumps(
                {
                    "job_id": record.job_id,
                    "progress": record.progress.value if record.progress else None,
                    "failed_stage": record.failed_stage,
                    "error": record.error,
                },
                ensure_ascii=False,
            )
        )


if __name__ == "__main__":
    main()
