"""
Console entry point of the OMR interview scoring tool.
Loads one round, grades it in the background and prints the summary,
selected students or a seeded sample; optionally exports the results.
"""

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from omr_grading.core import AnalysisCache, GradingAggregator, RoundContext, SheetAnalyzer
from omr_grading.core.models import GradingSnapshot, RoundSummary, StudentGrade
from omr_grading.storage import RegistryStore, RoundPaths, ScoringRuleStore, SessionStore
from omr_grading.utils import app_logger, set_console_level, FileHandler, OMRUtils
from omr_grading.workers import GradingWorker


def build_services(config: Dict[str, Any], round_name: str):
    """Wire the stores and both caches for one round."""
    paths_cfg = config.get('PATHS', {})
    paths = RoundPaths(Path(paths_cfg.get('rounds_folder', 'data/Rounds')))

    context = RoundContext(round_name)
    registry_store = RegistryStore(paths)
    cache = AnalysisCache(context, SessionStore(paths), ScoringRuleStore(paths), registry_store)
    aggregator = GradingAggregator(cache)
    return context, registry_store, cache, aggregator


def print_summary(summary: RoundSummary) -> None:
    print("\n--- ROUND SUMMARY ---")
    print(f"Sheets: {summary.total_sheet_count} | Errors: {summary.error_sheet_count} | "
          f"Duplicates: {summary.duplicate_combined_id_count} | Missing combined id: {summary.null_combined_id_count}")
    for label, text in (("Error", summary.error_sheet_list),
                        ("Duplicate", summary.duplicate_combined_id_list),
                        ("Missing combined id", summary.null_combined_id_list)):
        if text:
            print(f"  {label}: {text}")
    if summary.has_mismatch:
        print(summary.mismatch_message)
        for text in (summary.missing_in_grading_list, summary.missing_in_registry_list):
            if text:
                print(f"  {text}")


def print_grade(grade: StudentGrade) -> None:
    scores = ", ".join("-" if s is None else f"{s:.2f}" for s in grade.question_scores)
    total = "-" if grade.total_score is None else f"{grade.total_score:.2f}"
    flags = []
    if grade.is_duplicate:
        flags.append(f"duplicate x{grade.duplicate_count}")
    if grade.is_simple_error:
        flags.append("error")
    print(f"  {grade.student_id} {grade.student_name or ''} | [{scores}] total {total} "
          f"| rank {grade.rank or '-'} | interviewers {grade.interviewer_count}"
          + (f" | {', '.join(flags)}" if flags else ""))


def run_grading(aggregator: GradingAggregator, warm_ids: List[str]) -> Optional[GradingSnapshot]:
    """Run the grading worker and wait for it."""
    outcome: Dict[str, Any] = {}
    worker = GradingWorker(
        aggregator,
        on_complete=lambda snapshot: outcome.setdefault('snapshot', snapshot),
        on_error=lambda error: outcome.setdefault('error', error),
        warm_student_ids=warm_ids,
    )
    worker.start()
    worker.join()

    if 'error' in outcome:
        print(f"Grading failed: {outcome['error']}")
        return None
    return outcome.get('snapshot')


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Grade one round of interview OMR sheets.")
    parser.add_argument('--round', required=True, help="Round name (folder under the rounds folder).")
    parser.add_argument('--config', type=Path, default=Path("config.json"), help="Config file.")
    parser.add_argument('--student', action='append', default=[], help="Show this student (repeatable).")
    parser.add_argument('--sample', type=int, nargs='?', const=-1, metavar='N',
                        help="Show a seeded random sample of N students (config default when N is omitted).")
    parser.add_argument('--seed', type=int, help="Seed for --sample.")
    parser.add_argument('--import-registry', type=Path, help="Import a registry workbook into the round first.")
    parser.add_argument('--export', type=Path, help="Export grades (xlsx) and sheets (csv) to this folder.")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    app_logger.info("==========================================")
    app_logger.info("     STARTING OMR INTERVIEW GRADING       ")
    app_logger.info("==========================================")

    try:
        config = FileHandler.load_config(args.config) if args.config.exists() else {}
        set_console_level(config.get('LOGGING', {}).get('console_level', 'INFO'))
        context, registry_store, cache, aggregator = build_services(config, args.round)

        if args.import_registry:
            registry_store.import_xlsx(context.current_round, args.import_registry)
            cache.invalidate()
    except (OSError, ValueError) as e:
        app_logger.critical(f"Startup failed: {e}")
        print(f"Startup error: {e}")
        return 1

    sampling_cfg = config.get('SAMPLING', {})
    if args.sample is not None:
        seed = args.seed if args.seed is not None else sampling_cfg.get('default_seed', 42)
        count = args.sample if args.sample >= 0 else sampling_cfg.get('default_count', 5)
        try:
            sample = aggregator.random_sample_student_ids(count, seed)
            sample_grades = aggregator.grades_for(sample)
        except (OSError, ValueError) as e:
            app_logger.error(f"Sampling failed: {e}")
            print(f"Grading failed: {e}")
            return 1

        print(f"\n--- SAMPLE ({len(sample)}, seed {seed}) ---")
        for grade in sample_grades.values():
            print_grade(grade)

    snapshot = run_grading(aggregator, args.student)
    if snapshot is None:
        return 1

    print_summary(snapshot.summary)

    if args.student:
        print("\n--- STUDENTS ---")
        for student_id in args.student:
            grade = aggregator.grade_for(student_id)
            if grade is None:
                print(f"  {student_id}: no sheets")
            else:
                print_grade(grade)

    if args.export:
        prefix = OMRUtils.sanitize_folder_name(context.current_round, fallback="round")
        FileHandler.save_results_to_excel(
            [aggregator.format_grade_row(g) for g in snapshot.results], args.export, f"{prefix}_grades")
        FileHandler.save_results_to_csv(
            [SheetAnalyzer.format_sheet_row(s) for s in cache.all_sheet_results()], args.export, f"{prefix}_sheets")

    app_logger.info("Grading run finished.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
