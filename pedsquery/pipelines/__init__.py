from pedsquery.pipelines.qa import QAPipeline

__all__ = ["QAPipeline"]
