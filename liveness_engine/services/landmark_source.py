"""
Landmark, frame and evidence interfaces plus their MediaPipe/OpenCV adapters
"""
import logging
import os
from typing import Optional, Protocol

import cv2
import mediapipe as mp
import numpy as np

from ..config import config
from ..exceptions import ModelUnavailableError
from ..models.data_models import DetectionResult, LandmarkSet, VerificationResult
from ..utils.frames import is_valid_frame, to_rgb

logger = logging.getLogger(__name__)


class LandmarkSource(Protocol):
    """Anything that turns an RGB frame into a DetectionResult."""

    def detect(self, frame: np.ndarray) -> DetectionResult:
        ...


class FrameSource(Protocol):
    """Anything that yields RGB/RGBA uint8 frames, or None when none is available."""

    def read(self) -> Optional[np.ndarray]:
        ...


class EvidenceSink(Protocol):
    """Optional consumer of recorded evidence for a finished attempt."""

    def store(self, blob: bytes, result: VerificationResult) -> None:
        ...


def _to_mp_image(frame: np.ndarray) -> "mp.Image":
    rgb = np.ascontiguousarray(to_rgb(frame))
    return mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)


def _check_model_path(model_path: Optional[str]) -> str:
    if not model_path:
        raise ModelUnavailableError("Model path not provided")
    if not os.path.exists(model_path):
        raise ModelUnavailableError(f"MediaPipe model not found at {model_path}")
    return model_path


class MediaPipeFaceDetectorSource:
    """
    Coarse landmark source backed by the MediaPipe BlazeFace detector.

    Each detection carries six keypoints (eyes, nose tip, mouth, ears) in
    normalized coordinates; they are converted to source-frame pixels.
    """

    def __init__(self, model_path: Optional[str] = None, min_confidence: float = 0.5):
        self.model_path = model_path or config.FACE_DETECTOR_MODEL_PATH
        self.min_confidence = min_confidence
        self._face_detector = None

    @property
    def face_detector(self):
        """
        Lazy initialization of the MediaPipe FaceDetector.

        Raises:
            ModelUnavailableError: If the model file is missing or cannot be loaded
        """
        if self._face_detector is None:
            model_path = _check_model_path(self.model_path)
            try:
                base_options = mp.tasks.BaseOptions(model_asset_path=model_path)
                options = mp.tasks.vision.FaceDetectorOptions(
                    base_options=base_options,
                    running_mode=mp.tasks.vision.RunningMode.IMAGE,
                    min_detection_confidence=self.min_confidence,
                )
                self._face_detector = mp.tasks.vision.FaceDetector.create_from_options(options)
                logger.info(f"Face detector loaded from {model_path}")
            except Exception as e:
                logger.error(f"Failed to initialize MediaPipe FaceDetector: {e}")
                raise ModelUnavailableError(f"Failed to load face detector: {e}") from e
        return self._face_detector

    def detect(self, frame: np.ndarray) -> DetectionResult:
        """
        Detect faces in an RGB frame.

        Args:
            frame: RGB or RGBA uint8 frame

        Returns:
            DetectionResult: face count, best detection score and its coarse landmarks
        """
        if not is_valid_frame(frame):
            return DetectionResult(face_count=0, confidence=0.0)

        detector = self.face_detector
        height, width = frame.shape[:2]
        try:
            detections = detector.detect(_to_mp_image(frame)).detections
        except Exception as e:
            logger.error(f"Face detection failed: {e}")
            raise ModelUnavailableError(f"Face detector stopped responding: {e}") from e

        if not detections:
            return DetectionResult(face_count=0, confidence=0.0)

        best = max(detections, key=lambda d: d.categories[0].score if d.categories else 0.0)
        confidence = float(best.categories[0].score) if best.categories else 0.0
        points = [(kp.x * width, kp.y * height) for kp in best.keypoints]
        return DetectionResult(
            face_count=len(detections),
            confidence=confidence,
            landmarks=LandmarkSet.coarse(points) if points else None,
        )

    def close(self) -> None:
        if self._face_detector is not None:
            self._face_detector.close()
            self._face_detector = None


class MediaPipeFaceLandmarkerSource:
    """
    Dense landmark source backed by the MediaPipe FaceLandmarker (468-point mesh).

    Up to two faces are tracked so that a second face in view can be reported.
    """

    def __init__(self, model_path: Optional[str] = None, num_faces: int = 2):
        self.model_path = model_path or config.FACE_LANDMARKER_MODEL_PATH
        self.num_faces = num_faces
        self._face_landmarker = None

    @property
    def face_landmarker(self):
        """
        Lazy initialization of the MediaPipe FaceLandmarker.

        Low detection thresholds catch faces in typical webcam conditions.

        Raises:
            ModelUnavailableError: If the model file is missing or cannot be loaded
        """
        if self._face_landmarker is None:
            model_path = _check_model_path(self.model_path)
            try:
                base_options = mp.tasks.BaseOptions(model_asset_path=model_path)
                options = mp.tasks.vision.FaceLandmarkerOptions(
                    base_options=base_options,
                    running_mode=mp.tasks.vision.RunningMode.IMAGE,
                    num_faces=self.num_faces,
                    min_face_detection_confidence=0.3,
                    min_face_presence_confidence=0.3,
                    output_face_blendshapes=False,
                    output_facial_transformation_matrixes=False,
                )
                self._face_landmarker = mp.tasks.vision.FaceLandmarker.create_from_options(options)
                logger.info(f"Face landmarker loaded from {model_path}")
            except Exception as e:
                logger.error(f"Failed to initialize MediaPipe FaceLandmarker: {e}")
                raise ModelUnavailableError(f"Failed to load face landmarker: {e}") from e
        return self._face_landmarker

    def detect(self, frame: np.ndarray) -> DetectionResult:
        """
        Extract the dense mesh of the first face.

        z is scaled by the frame width, matching the x scale of the mesh.
        """
        if not is_valid_frame(frame):
            return DetectionResult(face_count=0, confidence=0.0)

        landmarker = self.face_landmarker
        height, width = frame.shape[:2]
        try:
            faces = landmarker.detect(_to_mp_image(frame)).face_landmarks
        except Exception as e:
            logger.error(f"Face landmark detection failed: {e}")
            raise ModelUnavailableError(f"Face landmarker stopped responding: {e}") from e

        if not faces:
            return DetectionResult(face_count=0, confidence=0.0)

        points = [(lm.x * width, lm.y * height, lm.z * width) for lm in faces[0]]
        return DetectionResult(
            face_count=len(faces),
            confidence=1.0,
            landmarks=LandmarkSet.dense(points),
        )

    def close(self) -> None:
        if self._face_landmarker is not None:
            self._face_landmarker.close()
            self._face_landmarker = None


class OpenCVFrameSource:
    """Camera or video-file frames via cv2.VideoCapture, converted BGR -> RGB."""

    def __init__(self, device=0):
        self.device = device
        self._capture = None

    @property
    def capture(self):
        if self._capture is None:
            self._capture = cv2.VideoCapture(self.device)
            if not self._capture.isOpened():
                logger.warning(f"Could not open video source {self.device}")
        return self._capture

    def read(self) -> Optional[np.ndarray]:
        ok, frame = self.capture.read()
        if not ok or frame is None:
            return None
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def release(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()


def encode_evidence(frame: np.ndarray) -> Optional[bytes]:
    """JPEG-encode an RGB frame for an EvidenceSink; None if encoding fails."""
    if not is_valid_frame(frame):
        return None
    bgr = cv2.cvtColor(to_rgb(frame), cv2.COLOR_RGB2BGR)
    ok, buffer = cv2.imencode(".jpg", bgr)
    return buffer.tobytes() if ok else None
