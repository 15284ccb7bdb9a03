"""
Response Formatter
==================
Shapes comparison reports into API responses.
"""

from typing import Dict, Any, List

from app.models.scheme import ComparisonReport, QuoteRanking
from app.utils.helpers import format_limit, format_currency


class ResponseFormatter:
    """Formats comparison reports for the API and the broker UI"""

    @staticmethod
    def format_comparison_report(report: ComparisonReport) -> Dict[str, Any]:
        """
        Format a report into a response with display-ready rankings.

        Args:
            report: ComparisonReport object

        Returns:
            Dictionary with the report plus a ``ranked_quotes`` display block
        """
        formatted = {
            "status": "partial" if report.failed_documents else "success",
            "comparison_id": report.comparison_id,
            "report": report.model_dump(mode="json"),
            "ranked_quotes": [
                ResponseFormatter._format_ranking(ranking) for ranking in report.rankings
            ],
            "retry_available": [
                {
                    "document_id": failed.document_id,
                    "filename": failed.filename,
                    "message": failed.message,
                }
                for failed in report.failed_documents
            ],
        }
        return formatted

    @staticmethod
    def _format_ranking(ranking: QuoteRanking) -> Dict[str, Any]:
        """Format a single ranked quote"""
        return {
            "rank": ranking.rank_position,
            "insurer": ranking.insurer_name,
            "premium": format_currency(ranking.premium_amount),
            "scores": {
                "overall": f"{ranking.overall_score}/100",
                "coverage": f"{ranking.coverage_score}/100",
                "price": f"{ranking.price_score}/100",
            },
            "recommendation": ranking.recommendation_category.value,
            "limits": {
                category: format_limit(limit)
                for category, limit in ranking.coverage_limits.items()
            },
            "strengths": ranking.strengths,
            "concerns": ranking.concerns,
        }

    @staticmethod
    def format_rankings(rankings: List[QuoteRanking]) -> List[Dict[str, Any]]:
        return [ResponseFormatter._format_ranking(r) for r in rankings]


# Create singleton
response_formatter = ResponseFormatter()
