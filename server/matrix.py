"""Fixed-size 2x2 matrix used for the position filter covariance algebra.

Layout is row-major::

    | a  b |
    | c  d |
"""

from dataclasses import dataclass

from errors import SingularMatrixError

SINGULAR_EPSILON = 1e-10


@dataclass(frozen=True)
class Matrix2:
    a: float
    b: float
    c: float
    d: float

    @classmethod
    def identity(cls) -> "Matrix2":
        return cls(1.0, 0.0, 0.0, 1.0)

    @classmethod
    def diagonal(cls, x: float, y: float | None = None) -> "Matrix2":
        """Diagonal matrix; a single value fills both entries."""
        return cls(x, 0.0, 0.0, x if y is None else y)

    def __add__(self, other: "Matrix2") -> "Matrix2":
        return Matrix2(self.a + other.a, self.b + other.b, self.c + other.c, self.d + other.d)

    def __sub__(self, other: "Matrix2") -> "Matrix2":
        return Matrix2(self.a - other.a, self.b - other.b, self.c - other.c, self.d - other.d)

    def __matmul__(self, other: "Matrix2") -> "Matrix2":
        return Matrix2(
            self.a * other.a + self.b * other.c,
            self.a * other.b + self.b * other.d,
            self.c * other.a + self.d * other.c,
            self.c * other.b + self.d * other.d,
        )

    def apply(self, x: float, y: float) -> tuple[float, float]:
        """Multiply by the column vector (x, y)."""
        return self.a * x + self.b * y, self.c * x + self.d * y

    @property
    def determinant(self) -> float:
        return self.a * self.d - self.b * self.c

    @property
    def trace(self) -> float:
        return self.a + self.d

    def inverse(self, eps: float = SINGULAR_EPSILON) -> "Matrix2":
        """Inverse via the explicit adjugate formula.

        Raises SingularMatrixError when |det| < eps.
        """
        det = self.determinant
        if abs(det) < eps:
            raise SingularMatrixError(f"determinant {det!r} below {eps!r}")
        return Matrix2(self.d / det, -self.b / det, -self.c / det, self.a / det)
