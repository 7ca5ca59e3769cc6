"""End-of-tour report exports."""

from .tour_report import tour_report_to_csv, tour_report_to_json, write_tour_report

__all__ = ["tour_report_to_csv", "tour_report_to_json", "write_tour_report"]
