"""
dectlib: matrix-free material decomposition for dual-energy X-ray CT.

Two material images are recovered from two-energy projection data by solving the
Tikhonov normal equations (A^T A + Q2) g = A^T m with the conjugate gradient
method, where Q2 couples the two materials block-wise.
"""

__version__ = "0.1.0"

from .errors import ConfigurationError, NumericalBreakdown
from .config import (AttenuationCoefficients, GeometryConfig, RegularizationConfig,
                     IterationConfig, NoiseConfig, ReconstructionConfig)
from .operators import (Operator, NormalOperator, SumOperator, build_normal_equation_operator,
                        stack_images, split_stacked)
from .projectors import ParallelBeamProjector, TwoMaterialProjector, default_detector_count
from .regularizers import BlockCouplingRegularizer
from .monitors import CGTraceEntry, ReconstructionErrorMonitor, ResidualMonitor, relative_error
from .solvers import CGStatus, CGState, CGResult, ConjugateGradientSolver, conjugate_gradient
from .metrics import ssim
from .simulation import (blob_phantom, spot_phantom, resize_image, rotate_image,
                         add_gaussian_noise, simulate_measurements)
from .pipeline import ReconstructionResult, build_operators, reconstruct_materials, run_material_decomposition

__all__ = [
    '__version__',
    'ConfigurationError', 'NumericalBreakdown',
    'AttenuationCoefficients', 'GeometryConfig', 'RegularizationConfig', 'IterationConfig',
    'NoiseConfig', 'ReconstructionConfig',
    'Operator', 'NormalOperator', 'SumOperator', 'build_normal_equation_operator',
    'stack_images', 'split_stacked',
    'ParallelBeamProjector', 'TwoMaterialProjector', 'default_detector_count',
    'BlockCouplingRegularizer',
    'CGTraceEntry', 'ReconstructionErrorMonitor', 'ResidualMonitor', 'relative_error',
    'CGStatus', 'CGState', 'CGResult', 'ConjugateGradientSolver', 'conjugate_gradient',
    'ssim',
    'blob_phantom', 'spot_phantom', 'resize_image', 'rotate_image', 'add_gaussian_noise',
    'simulate_measurements',
    'ReconstructionResult', 'build_operators', 'reconstruct_materials', 'run_material_decomposition',
]
