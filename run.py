#!/usr/bin/env python
"""
OMR Grader - Command Line Entry Point

Usage:
    python run.py layout --questions N --options K [--version v1]
    python run.py grade IMAGE_DIR --key KEY_JSON [--tier NAME] [--output PATH]

Examples:
    python run.py layout --questions 40 --options 4 > layout.json
    python run.py grade scans/ --key key.json                 # Tiered detection
    python run.py grade scans/ --key key.json --tier cv       # Pixel analysis only
"""
import argparse
import json
import logging
import sys

from omr_grader.core import BaseAPIException
from omr_grader.pipeline import Exam, SubmissionProcessor, layout_for, save_results
from omr_grader.repositories import InMemoryGradingRepository, InMemoryImageStore
from omr_grader.utils import list_images

logger = logging.getLogger("omr.cli")


def cmd_layout(args) -> int:
    try:
        template = layout_for(args.questions, args.options, args.version)
    except BaseAPIException as e:
        print(f"Error: {e.detail}", file=sys.stderr)
        return 2
    print(json.dumps(template.to_dict(), indent=2))
    return 0


def cmd_grade(args) -> int:
    try:
        exam = Exam.from_json_file(args.key)
    except BaseAPIException as e:
        print(f"Invalid answer key: {e.detail}", file=sys.stderr)
        return 2

    images = list_images(args.image_dir)
    if not images:
        print(f"No images found in {args.image_dir}", file=sys.stderr)
        return 1

    processor = SubmissionProcessor.from_settings(InMemoryGradingRepository(), InMemoryImageStore())

    results = []
    for path in images:
        entry = {"image_name": path.name}
        try:
            graded = processor.process_image(path.read_bytes(), exam, tier=args.tier)
            entry.update({"success": True, **graded.to_dict()})
        except BaseAPIException as e:
            entry.update({
                "success": False,
                "error": e.detail,
                "error_code": e.error_code,
                "issues": e.issues or [e.detail],
            })
        except Exception as e:
            logger.exception(f"Unexpected error processing {path.name}")
            entry.update({"success": False, "error": f"Unexpected error: {str(e)}"})
        results.append(entry)

        status = f"{entry['percentage']}% ({entry['grade']})" if entry["success"] else f"FAILED: {entry['error']}"
        print(f"  {path.name:<30} {status}")

    save_results(results, args.output)

    successful = sum(1 for r in results if r["success"])
    print(f"""
    Graded:  {successful}/{len(results)}
    Output:  {args.output}
    """)
    return 0 if successful == len(results) else 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Photographed bubble-sheet grader"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    layout_parser = subparsers.add_parser("layout", help="Print the sheet layout contract as JSON")
    layout_parser.add_argument("--questions", type=int, required=True, help="Number of questions (1-100)")
    layout_parser.add_argument("--options", type=int, default=4, help="Options per question (3, 4 or 5)")
    layout_parser.add_argument("--version", default="v1", help="Layout version (default: v1)")
    layout_parser.set_defaults(func=cmd_layout)

    grade_parser = subparsers.add_parser("grade", help="Grade every sheet photo in a directory")
    grade_parser.add_argument("image_dir", help="Directory containing sheet photos")
    grade_parser.add_argument("--key", required=True, help="Answer key JSON file")
    grade_parser.add_argument("--tier", default=None, help="Run only this detection tier")
    grade_parser.add_argument(
        "--output",
        default="final_result.json",
        help="Output JSON path (default: final_result.json)"
    )
    grade_parser.set_defaults(func=cmd_grade)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
