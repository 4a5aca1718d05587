"""
Perception module for laser scan processing.

Components:
- RawScan / project_scan: Laser sweeps and their world-frame points
- LineFeatureExtractor: Line segments and landmarks (RANSAC, IEP)
- Geometry: Line distance, intersection and fitting primitives
- Transforms: Coordinate transformations
"""

from .scan import (
    RawScan,
    ProjectedScan,
    laser_origin,
    project_scan
)

from .line_extractor import (
    LineFeatureExtractor,
    RansacExtractor,
    IEPExtractor,
    IEPRansacExtractor,
    LineSegmentFeature,
    ScanPartition,
    ExtractionResult,
    EXTRACTION_METHODS,
    create_extractor,
    partition_scan,
    iep_split
)

from .geometry import (
    perpendicular_distance,
    perpendicular_distances,
    line_intersection,
    fit_line_least_squares,
    project_point_on_line
)

from .transforms import (
    Pose2D,
    normalize_angle,
    angle_difference,
    world_to_robot,
    robot_to_world
)

__all__ = [
    # Scans
    'RawScan',
    'ProjectedScan',
    'laser_origin',
    'project_scan',

    # Extraction
    'LineFeatureExtractor',
    'RansacExtractor',
    'IEPExtractor',
    'IEPRansacExtractor',
    'LineSegmentFeature',
    'ScanPartition',
    'ExtractionResult',
    'EXTRACTION_METHODS',
    'create_extractor',
    'partition_scan',
    'iep_split',

    # Geometry
    'perpendicular_distance',
    'perpendicular_distances',
    'line_intersection',
    'fit_line_least_squares',
    'project_point_on_line',

    # Transforms
    'Pose2D',
    'normalize_angle',
    'angle_difference',
    'world_to_robot',
    'robot_to_world'
]
