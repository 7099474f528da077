# ============================================================
# Face Identity Engine - Core Recognizer Module
# ============================================================

from core.recognizer.base_recognizer import BaseRecognizer, FaceEmbedding, cosine_similarity
from core.recognizer.face_database import DatabaseState, FaceDatabase
from core.recognizer.identity_store import FaceIdentity, IdentityStore, LoadWarning, WarningKind
from core.recognizer.index_loader import IndexLoader
from core.recognizer.matcher import UNKNOWN, MatchResult, match_one, rank_identities
from core.recognizer.sface_recognizer import SFaceRecognizer

__all__ = [
    "BaseRecognizer",
    "FaceEmbedding",
    "cosine_similarity",
    "DatabaseState",
    "FaceDatabase",
    "FaceIdentity",
    "IdentityStore",
    "LoadWarning",
    "WarningKind",
    "IndexLoader",
    "UNKNOWN",
    "MatchResult",
    "match_one",
    "rank_identities",
    "SFaceRecognizer",
]
