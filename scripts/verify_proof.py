"""
Verify Proof — roda uma imagem pelo pipeline completo e imprime o resultado.

    Image → Intake → (OCR ‖ Vision) → Fusão → Matching → Decisão

Usa os adapters configurados no .env (EasyOCR, Gemini se houver
GEMINI_API_KEY) e a base de DATABASE_URL.

Usage:
    python -m scripts.verify_proof path/to/receipt.jpg [--platform whatsapp]
        [--amount 1200 --currency PHP --reference BP2024-001] [--json]
"""
import argparse
import asyncio
import logging
import sys
import time
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from payproof.api.container import build_container
from payproof.api.schemas.responses import extraction_response
from payproof.config.settings import get_settings
from payproof.core.entities.job import Priority, SourcePlatform, SubmissionContext
from payproof.core.exceptions import InvalidImage


async def run(args) -> int:
    settings = get_settings()
    if args.database:
        settings = settings.model_copy(update={"database_url": args.database})
    container = build_container(settings)
    container.db.init_db()
    container.dispatcher.start()

    context = None
    if args.amount or args.currency or args.reference or args.candidate:
        context = SubmissionContext(
            expected_amount=Decimal(args.amount) if args.amount else None,
            currency=args.currency,
            reference=args.reference,
            candidate_id=args.candidate,
        )

    image_bytes = Path(args.image).read_bytes()
    t0 = time.perf_counter()
    try:
        receipt = await container.submit.execute(
            image_bytes,
            source_platform=SourcePlatform(args.platform),
            submitted_by=args.user,
            priority=Priority(args.priority),
            submission_context=context,
        )
    except InvalidImage as e:
        print(f"❌ Invalid image: {e}")
        await container.dispatcher.shutdown()
        return 2

    await container.dispatcher.join()
    await container.dispatcher.shutdown()
    await container.delivery.run_once()
    elapsed = round((time.perf_counter() - t0) * 1000, 1)

    extraction = container.store.get_extraction(receipt.extraction_id)
    history = container.store.list_decisions(receipt.extraction_id)
    if extraction is None:
        print(f"❌ Job {receipt.job_id} produced no extraction")
        return 1

    result = extraction_response(extraction, history)
    if args.json:
        print(result.model_dump_json(indent=2))
        return 0

    print(f"\n{'=' * 60}")
    print(f"  Extraction {result.extraction_id}{'  (duplicate)' if receipt.duplicate else ''}")
    print(f"{'=' * 60}")
    print(f"  OCR: {result.ocr_status:<12} Vision: {result.vision_status:<12} Legibility: {result.legibility:.2f}")
    print(f"  Confidence: {result.overall_confidence:.3f}   Flags: {', '.join(result.flags) or '-'}")
    for i, c in enumerate(result.candidates):
        marker = "→" if i == 0 else " "
        print(f"  {marker} {c.currency} {c.amount:<12} {c.method:<12} ref={c.reference or '-'} ({c.provenance})")
    if result.decision:
        d = result.decision
        print(f"\n  Decision: {d.outcome.upper()}  candidate={d.matched_candidate_id or '-'}  score={d.match_score}")
        print(f"  Reasons:  {', '.join(d.reason_codes)}")
        for s in d.scored_candidates[:5]:
            print(f"    {s['candidate_id']:<24} {s['score']:.3f}  {', '.join(s['reasons'])}")
    print(f"\n  Total: {elapsed}ms")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Run one payment screenshot through the pipeline")
    parser.add_argument("image", help="Path to the screenshot")
    parser.add_argument("--platform", default="web", choices=[p.value for p in SourcePlatform])
    parser.add_argument("--priority", default="normal", choices=[p.value for p in Priority])
    parser.add_argument("--user", default="cli", help="submitted_by")
    parser.add_argument("--amount", help="Expected amount")
    parser.add_argument("--currency", help="Expected currency (PHP, MYR)")
    parser.add_argument("--reference", help="Expected reference")
    parser.add_argument("--candidate", help="Pending payment id to verify against")
    parser.add_argument("--database", help="Override DATABASE_URL")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of a summary")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else get_settings().log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
