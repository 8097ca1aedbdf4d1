from progression_engine.modules.srs.service import SrsService, VocabularyRepository

__all__ = ["SrsService", "VocabularyRepository"]
