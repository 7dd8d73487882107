from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.enum import Enum
from amaranth.lib.wiring import In, Out

from functools import reduce

class AlwaysReady(wiring.Signature):
    def __init__(self, payload_shape):
        super().__init__({
            'payload': Out(payload_shape),
            'valid': Out(1),
        })

# Builds a two-way mux out of AND and OR. Enum members and ints are accepted
# for either input and are converted to constants.
def mux(select, one, zero):
    if isinstance(one, Enum):
        one = one.value
    if isinstance(one, int):
        one = Const(one)
    if isinstance(zero, Enum):
        zero = zero.value
    if isinstance(zero, int):
        zero = Const(zero)
    one = Value.cast(one)
    zero = Value.cast(zero)
    n = max(one.shape().width, zero.shape().width)
    select = select.any() # force to 1 bit
    return (
        (select.replicate(n) & one) | (~select.replicate(n) & zero)
    )

# Builds a chained mux that selects between a set of options, which must be
# mutually exclusive.
#
# 'options' is a list of pairs. The first element in each pair is evaluated as a
# boolean condition. If 1, the second element is OR'd into the result.
#
# If more than one condition is true simultaneously, the result will bitwise OR
# the results together. It is up to you to ensure that all conditions are
# mutually exclusive.
#
# If a default is provided, it will be used when no other conditions match.
# Otherwise, the default is zero.
def oneof(options, default = None):
    assert len(options) > 0
    output = []
    matches = []
    for (condition, result) in options:
        if isinstance(condition, int):
            condition = Const(condition)
        if isinstance(result, Enum):
            result = result.value
        if isinstance(result, int):
            result = Const(result)
        result = Value.cast(result)

        matches.append(condition.any())

        case = condition.any().replicate(result.shape().width) & result

        output.append(case)

    if default is not None:
        if isinstance(default, Enum):
            default = default.value
        if isinstance(default, int):
            default = Const(default)
        default = Value.cast(default)
        no_match = ~reduce(lambda a, b: a|b, matches)
        output.append(no_match.replicate(default.shape().width) & default)

    return reduce(lambda a, b: a|b, output)
