#!/usr/bin/env python3
"""
Prescription Scanning Tool
Run a prescription photo through the pipeline and see what it extracts
"""

import sys
import json
import argparse
from pathlib import Path
sys.path.append(str(Path(__file__).parent.parent))

from rxnudge.config import setup_logging
from rxnudge.pipeline import build_pipeline
from rxnudge.utils import format_interaction

MIME_TYPES = {
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.webp': 'image/webp',
    '.pdf': 'application/pdf',
}

FLAG_EMOJI = {'RED': '🔴', 'YELLOW': '🟡', 'GREEN': '🟢'}


def print_failures(failures):
    if not failures:
        return
    print(f"\n⚠️  {len(failures)} item(s) need attention:")
    for failure in failures:
        name = failure.get('originalName') or 'unreadable'
        print(f"  ❌ [{failure['reason']}] {name}: {failure['message']}")
        if failure.get('suggestions'):
            print(f"     Did you mean: {', '.join(failure['suggestions'])}")


def print_medications(medications):
    for i, med in enumerate(medications, 1):
        data = med['extracted_data']
        flag = med.get('safety_flag', 'GREEN')
        print(f"  {i}. {FLAG_EMOJI.get(flag, '⚪')} {data['drug_name']}")
        print(f"     Dose: {data['dosage'] or 'No dose'}")
        print(f"     Frequency: {data['frequency'] or 'No frequency'} ({data['dose_timing'] or 'no timing'})")
        print(f"     Route: {data['route'] or 'No route'}")
        if data.get('dosing_source') == 'ai_generated':
            print("     ⚠️  Dosing details not on the prescription")
        print(f"     Safety: {med.get('safety_reasoning', '')}")
        for interaction in med.get('interactions', []):
            print(f"     {format_interaction(interaction)}")

        card = med.get('patient_facing_card')
        if card:
            print(f"\n     📋 {card['headline']}")
            for key in ('plain_instruction', 'the_why', 'habit_hook'):
                if card[key]:
                    print(f"        {card[key]}")
            if card['warning_label']:
                for line in card['warning_label'].splitlines():
                    print(f"        ⚠️  {line}")
        print()


def scan_prescription_file(pipeline, file_path: str, args) -> bool:
    """
    Scan a prescription file and show detailed results
    """
    file_path = Path(file_path)

    if not file_path.exists():
        print(f"❌ File not found: {file_path}")
        return False

    mime_type = MIME_TYPES.get(file_path.suffix.lower())
    if not mime_type:
        print(f"❌ Unsupported file type: {file_path.suffix}")
        return False

    file_bytes = file_path.read_bytes()
    patient = {'age': args.age, 'name': args.name, 'lifestyle': args.lifestyle}

    print(f"🔍 Scanning Prescription: {file_path.name}")
    print("=" * 60)
    print(f"📄 File Type: {mime_type}")
    print(f"📊 File Size: {len(file_bytes):,} bytes")
    print()

    result = pipeline.process(file_bytes, mime_type, active_medications=args.active,
                              patient_context=patient, force_refresh=args.force_refresh)

    print(f"🔑 Image hash: {result['image_hash']}")
    if result['status'] != 'ok':
        print(f"❌ {result['error']}: {result.get('detail', '')}")
        print_failures(result.get('failedExtractions'))
        if result.get('suggestions'):
            print(f"\n💡 {result['suggestions']}")
        return False

    print(f"✅ Found {result['total_medications']} medication(s)\n")
    print_medications(result['medications'])
    print_failures(result.get('failedExtractions'))

    if args.confirm:
        print("\n📋 Confirming all medications and generating nudge cards")
        print("-" * 30)
        confirmed = pipeline.confirm(result['medications'], patient_context=patient,
                                     active_medications=args.active)
        print_medications(confirmed['medications'])
        print_failures(confirmed.get('failedExtractions'))
        if args.json:
            print(json.dumps(confirmed, indent=2))
    elif args.json:
        print(json.dumps(result, indent=2))

    print("=" * 60)
    print("✅ Scan completed!")
    return True


def main():
    parser = argparse.ArgumentParser(description="Scan a prescription photo and check its medications")
    parser.add_argument("file", nargs="?", help="Prescription image or PDF")
    parser.add_argument("--force-refresh", action="store_true", help="Ignore any cached result for this image")
    parser.add_argument("--confirm", action="store_true", help="Accept every medication and generate nudge cards")
    parser.add_argument("--invalidate", metavar="HASH", help="Drop the cached result for an image hash and exit")
    parser.add_argument("--age", type=int, help="Patient age")
    parser.add_argument("--name", default="", help="Patient name")
    parser.add_argument("--lifestyle", default="", help="Daily routine to hook doses onto")
    parser.add_argument("--active", nargs="*", default=[], help="Medications the patient already takes")
    parser.add_argument("--json", action="store_true", help="Print the raw result as JSON")
    parser.add_argument("--log-level", default=None, help="Logging level (default from LOG_LEVEL)")

    args = parser.parse_args()
    setup_logging(args.log_level)

    pipeline = build_pipeline(start_sweeper=False)

    if args.invalidate:
        result = pipeline.invalidate(args.invalidate)
        print(f"{'✅ Invalidated' if result['invalidated'] else 'ℹ️  No in-memory entry for'} {args.invalidate}")
        return

    if not args.file:
        print("🧪 Prescription Scanning Tool")
        print("=" * 30)
        print()
        print("Usage:")
        print("  python scripts/scan_prescription.py <file> [--confirm] [--age 70] [--active warfarin]")
        print("  python scripts/scan_prescription.py --invalidate <image hash>")
        print()
        return

    if not scan_prescription_file(pipeline, args.file, args):
        sys.exit(1)


if __name__ == "__main__":
    main()
