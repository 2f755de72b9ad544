from .anti_spoofing import AntiSpoofingAnalyzer
from .challenge_engine import ChallengeEngine
from .challenge_state_machine import ChallengeStateMachine
from .depth_scorer import DepthScorer
from .eye_reflection import EyeReflectionAnalyzer
from .micro_expression import MicroExpressionAnalyzer
from .passive_analyzer import PassiveLivenessAnalyzer
from .scoring_engine import ScoringEngine
from .session_manager import SessionManager, VerificationSession
