Fr_modulus = 21888242871839275222246405745257275088548364400416034343698204186575808495617  # Modulus of the scalar field of alt_bn128

# 5 generates the multiplicative group; 2^28 divides Fr_modulus - 1
Fr_generator = 5
Fr_two_adicity = 28


class Fr:
    __slots__ = ("value",)

    def __init__(self, value):
        if isinstance(value, Fr):
            value = value.value
        self.value = value % Fr_modulus

    def __add__(self, other):
        return Fr(self.value + _raw(other))

    def __radd__(self, other):
        return self + other

    def __mul__(self, other):
        return Fr(self.value * _raw(other))

    def __rmul__(self, other):
        return self * other

    def __neg__(self):
        return Fr(Fr_modulus - self.value)

    def __sub__(self, other):
        return Fr(self.value - _raw(other))

    def __rsub__(self, other):
        return Fr(_raw(other) - self.value)

    def __eq__(self, other):
        if isinstance(other, (Fr, int)):
            return self.value == _raw(other) % Fr_modulus
        return NotImplemented

    def __hash__(self):
        return hash(self.value)

    def __int__(self):
        return self.value

    def __bool__(self):
        return self.value != 0

    def __str__(self):
        return f"Fr({self.value})"

    def __repr__(self):
        return self.__str__()

    def is_zero(self):
        return self.value == 0

    def invert(self):
        if self.value == 0:
            raise ZeroDivisionError("zero has no inverse in Fr")
        return self.pow(Fr_modulus - 2)

    def __truediv__(self, other):
        return self * Fr(other).invert()

    def pow(self, power):
        power = power % (Fr_modulus - 1)
        return Fr(pow(self.value, power, Fr_modulus))

    def to_signed(self):
        """
        Return the representative in (-p/2, p/2], i.e. the integer a signed
        scalar stands for.
        """
        if self.value > Fr_modulus // 2:
            return self.value - Fr_modulus
        return self.value

    def short_str(self):
        """
        Return a string for the field element using the shorter of
        its positive or negative representative.
        """
        if self.value == 0:
            return "0"
        pos_str = str(self.value)
        neg_str = "-" + str(Fr_modulus - self.value)
        return neg_str if len(neg_str) < len(pos_str) else pos_str


def _raw(value):
    return value.value if isinstance(value, Fr) else value


def root_of_unity(order: int) -> int:
    """Primitive ``order``-th root of unity; ``order`` must be a power of two."""
    if order & (order - 1) or order.bit_length() - 1 > Fr_two_adicity:
        raise ValueError(f"no root of unity of order {order} in Fr")
    return pow(Fr_generator, (Fr_modulus - 1) // order, Fr_modulus)


def _simple_ft(vals, roots):
    size = len(roots)
    out = []
    for i in range(size):
        acc = 0
        for j in range(size):
            acc += vals[j] * roots[(i * j) % size]
        out.append(acc % Fr_modulus)
    return out


def _fft(vals, roots):
    if len(vals) <= 4:
        return _simple_ft(vals, roots)
    left = _fft(vals[::2], roots[::2])
    right = _fft(vals[1::2], roots[::2])
    out = [0] * len(vals)
    for i, (x, y) in enumerate(zip(left, right)):
        y_times_root = y * roots[i]
        out[i] = (x + y_times_root) % Fr_modulus
        out[i + len(left)] = (x - y_times_root) % Fr_modulus
    return out


def expand_root_of_unity(root):
    roots = [1, root]
    while roots[-1] != 1:
        roots.append((roots[-1] * root) % Fr_modulus)
    return roots


def fft(vals, root, inv=False):
    """
    Evaluate the polynomial with coefficients ``vals`` over the powers of
    ``root`` (or interpolate, with ``inv``). ``len(vals)`` must equal the
    order of ``root``.
    """
    roots = expand_root_of_unity(root)
    if len(roots) - 1 != len(vals):
        raise ValueError(f"expected {len(roots) - 1} values, got {len(vals)}")
    if inv:
        inv_len = pow(len(vals), Fr_modulus - 2, Fr_modulus)
        return [(x * inv_len) % Fr_modulus for x in _fft(vals, roots[:0:-1])]
    return _fft(vals, roots[:-1])


def powers(base, count):
    out = []
    acc = 1
    for _ in range(count):
        out.append(acc)
        acc = acc * base % Fr_modulus
    return out
