from category_mapper.llm.base import OracleSession, SelectionOracle
from category_mapper.llm.openai_client import OpenAIClient

__all__ = ["OracleSession", "SelectionOracle", "OpenAIClient"]
