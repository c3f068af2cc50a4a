"""Tests for cost functions, their gradients and R-operator counterparts."""

import numpy as np
import pytest
import scipy.special

from costnet.autofunc import Gradient, RGradient, RVector, RVariable, Variable
from costnet.cost_func import (
    AbsCost,
    COST_FUNCTIONS,
    CrossEntropyCost,
    DotCost,
    MeanSquaredCost,
    RegularizingCost,
    SigmoidCECost,
    costFunc,
    costFunction,
)

EPS = 1e-6
TOL = 1e-4


def closed_form(costfunc, x, a):
  """Directly evaluated cost formulas."""
  if isinstance(costfunc, MeanSquaredCost):
    return np.sum((a - x)**2)
  if isinstance(costfunc, AbsCost):
    return np.sum(np.abs(a - x))
  if isinstance(costfunc, CrossEntropyCost):
    return -np.sum(x*np.log(a) + (1-x)*np.log(1-a))
  if isinstance(costfunc, DotCost):
    return -np.dot(x, a)
  if isinstance(costfunc, SigmoidCECost):
    s = scipy.special.expit(a)
    return -np.sum(x*np.log(s) + (1-x)*np.log(1-s))
  raise ValueError(costfunc)


def draw(costfunc, rng, n):
  """Draws an (expected, actual) pair inside each cost function's domain."""
  if isinstance(costfunc, CrossEntropyCost):
    return rng.uniform(0., 1., n), rng.uniform(0.1, 0.9, n)
  if isinstance(costfunc, SigmoidCECost):
    return rng.uniform(0., 1., n), rng.normal(0., 3., n)
  return rng.normal(size=n), rng.normal(size=n)


def cost_value(costfunc, x, a):
  return costfunc.cost(x, Variable(a)).output()[0]


def analytic_gradient(costfunc, x, a):
  aVar = Variable(a)
  grad = Gradient([aVar])
  costfunc.cost(x, aVar).propagateGradient(np.array([1.]), grad)
  return grad[aVar]


def numeric_gradient(f, a):
  g = np.zeros(len(a))
  for i in range(len(a)):
    ap, am = a.copy(), a.copy()
    ap[i] += EPS
    am[i] -= EPS
    g[i] = (f(ap) - f(am)) / (2*EPS)
  return g


def directional(f, a, d, eps=EPS):
  return (f(a + eps*d) - f(a - eps*d)) / (2*eps)


STRATEGIES = [MeanSquaredCost(), AbsCost(), CrossEntropyCost(), DotCost(), SigmoidCECost()]
IDS = [type(c).__name__ for c in STRATEGIES]


class TestCostValues:
  """Cost outputs are memoized and match the closed-form formulas."""

  @pytest.mark.parametrize("costfunc", STRATEGIES, ids=IDS)
  def test_matches_closed_form(self, costfunc, rng):
    for n in (1, 5, 20):
      x, a = draw(costfunc, rng, n)
      result = costfunc.cost(x, Variable(a))
      assert result.output().shape == (1,)
      np.testing.assert_allclose(result.output()[0], closed_form(costfunc, x, a), rtol=1e-8)

  @pytest.mark.parametrize("costfunc", STRATEGIES, ids=IDS)
  def test_output_memoized(self, costfunc, rng):
    x, a = draw(costfunc, rng, 7)
    result = costfunc.cost(x, Variable(a))
    first = result.output()
    second = result.output()
    assert first is second
    assert first[0] == second[0]

  @pytest.mark.parametrize("costfunc", STRATEGIES, ids=IDS)
  def test_output_is_read_only(self, costfunc, rng):
    x, a = draw(costfunc, rng, 4)
    out = costfunc.cost(x, Variable(a)).output()
    with pytest.raises(ValueError):
      out[0] = 0.

  def test_mean_squared_is_lazy(self):
    class exploding:
      def output(self):
        raise AssertionError("evaluated eagerly")

    MeanSquaredCost().cost(np.zeros(3), exploding())
    CrossEntropyCost().cost(np.zeros(3), exploding())
    DotCost().cost(np.zeros(3), exploding())
    SigmoidCECost().cost(np.zeros(3), exploding())

  def test_mean_squared_copies_expected(self):
    x = np.array([1., 2.])
    result = MeanSquaredCost().cost(x, Variable([0., 0.]))
    x[:] = 0.
    assert result.output()[0] == 5.


class TestCostGradients:
  """Analytic gradients agree with finite differences."""

  @pytest.mark.parametrize("costfunc", STRATEGIES, ids=IDS)
  def test_gradient_check(self, costfunc, rng):
    for n in range(1, 21):
      x, a = draw(costfunc, rng, n)
      expected = numeric_gradient(lambda v: cost_value(costfunc, x, v), a)
      np.testing.assert_allclose(analytic_gradient(costfunc, x, a), expected,
                                 rtol=TOL, atol=TOL)

  def test_mean_squared_closed_form_gradient(self, rng):
    x, a = rng.normal(size=6), rng.normal(size=6)
    aVar = Variable(a)
    grad = Gradient([aVar])
    MeanSquaredCost().cost(x, aVar).propagateGradient(np.array([3.]), grad)
    np.testing.assert_allclose(grad[aVar], 6.*(a - x))

  def test_abs_gradient_is_sign(self):
    x = np.array([0., 1., 2.])
    a = np.array([1., 1., -1.])
    np.testing.assert_array_equal(analytic_gradient(AbsCost(), x, a), [1., 1., -1.])

  @pytest.mark.parametrize("costfunc", STRATEGIES, ids=IDS)
  def test_constant_actual_receives_nothing(self, costfunc, rng):
    x, a = draw(costfunc, rng, 5)
    aVar = Variable(a)
    other = Variable(np.ones(2))
    grad = Gradient([other])
    result = costfunc.cost(x, aVar)
    assert result.constant(grad)
    assert not result.constant(Gradient([aVar]))
    result.propagateGradient(np.array([1.]), grad)
    np.testing.assert_array_equal(grad[other], np.zeros(2))
    assert aVar not in grad

  def test_propagate_does_not_alter_output(self, rng):
    x, a = rng.normal(size=4), rng.normal(size=4)
    aVar = Variable(a)
    result = MeanSquaredCost().cost(x, aVar)
    before = result.output().copy()
    for _ in range(2):
      result.propagateGradient(np.array([1.]), Gradient([aVar]))
    np.testing.assert_array_equal(result.output(), before)


class TestCostR:
  """R-operator results agree with the primal and with finite differences."""

  @pytest.mark.parametrize("costfunc", STRATEGIES, ids=IDS)
  def test_primal_matches_cost(self, costfunc, rng):
    for n in (1, 8, 20):
      x, a = draw(costfunc, rng, n)
      aVar = Variable(a)
      rvec = RVector({aVar: rng.normal(size=n)})
      rresult = costfunc.costR(rvec, x, RVariable(aVar, rvec))
      np.testing.assert_allclose(rresult.output(), costfunc.cost(x, Variable(a)).output(),
                                 rtol=1e-12)

  @pytest.mark.parametrize("costfunc", STRATEGIES, ids=IDS)
  def test_directional_derivative(self, costfunc, rng):
    for n in (1, 3, 11, 20):
      x, a = draw(costfunc, rng, n)
      d = rng.normal(size=n)
      aVar = Variable(a)
      rvec = RVector({aVar: d})
      rresult = costfunc.costR(rvec, x, RVariable(aVar, rvec))
      expected = directional(lambda v: cost_value(costfunc, x, v), a, d)
      np.testing.assert_allclose(rresult.rOutput()[0], expected, rtol=TOL, atol=TOL)

  @pytest.mark.parametrize("costfunc", STRATEGIES, ids=IDS)
  def test_hessian_vector_product(self, costfunc, rng):
    for n in (1, 6, 20):
      x, a = draw(costfunc, rng, n)
      d = rng.normal(size=n)
      aVar = Variable(a)
      rvec = RVector({aVar: d})
      grad, rgrad = Gradient([aVar]), RGradient([aVar])
      rresult = costfunc.costR(rvec, x, RVariable(aVar, rvec))
      rresult.propagateRGradient(np.array([1.]), np.array([0.]), rgrad, grad)
      np.testing.assert_allclose(grad[aVar], analytic_gradient(costfunc, x, a),
                                 rtol=1e-10, atol=1e-12)
      expected = directional(lambda v: analytic_gradient(costfunc, x, v), a, d, eps=1e-5)
      np.testing.assert_allclose(rgrad[aVar], expected, rtol=TOL, atol=TOL)

  @pytest.mark.parametrize("costfunc", STRATEGIES, ids=IDS)
  def test_r_gradient_without_gradient(self, costfunc, rng):
    x, a = draw(costfunc, rng, 5)
    aVar = Variable(a)
    rvec = RVector({aVar: rng.normal(size=5)})
    full = RGradient([aVar])
    costfunc.costR(rvec, x, RVariable(aVar, rvec)).propagateRGradient(
        np.array([1.]), np.array([0.]), full, Gradient([aVar]))
    only = RGradient([aVar])
    costfunc.costR(rvec, x, RVariable(aVar, rvec)).propagateRGradient(
        np.array([1.]), np.array([0.]), only, None)
    np.testing.assert_allclose(only[aVar], full[aVar])


class TestRegularizingCost:
  """Regularizer adds penalty * squared magnitudes to the delegate cost."""

  def test_value(self, rng):
    x, a = rng.normal(size=5), rng.normal(size=5)
    v = Variable(rng.normal(size=4))
    reg = RegularizingCost([v], 0.3, MeanSquaredCost())
    expected = MeanSquaredCost().cost(x, Variable(a)).output()[0] + 0.3*np.sum(v.vector**2)
    np.testing.assert_allclose(reg.cost(x, Variable(a)).output()[0], expected)

  def test_empty_variables_is_delegate(self, rng):
    x, a = rng.normal(size=5), rng.normal(size=5)
    reg = RegularizingCost([], 2., DotCost())
    assert reg.cost(x, Variable(a)).output()[0] == pytest.approx(-np.dot(x, a))

  def test_gradients_reach_output_and_variables(self, rng):
    x, a = rng.normal(size=5), rng.normal(size=5)
    v1, v2 = Variable(rng.normal(size=3)), Variable(rng.normal(size=2))
    aVar = Variable(a)
    reg = RegularizingCost([v1, v2], 0.5, MeanSquaredCost())
    grad = Gradient([aVar, v1, v2])
    reg.cost(x, aVar).propagateGradient(np.array([1.]), grad)
    np.testing.assert_allclose(grad[aVar], 2.*(a - x))
    np.testing.assert_allclose(grad[v1], 2.*0.5*v1.vector)
    np.testing.assert_allclose(grad[v2], 2.*0.5*v2.vector)

  def test_cost_r(self, rng):
    x, a = rng.normal(size=4), rng.normal(size=4)
    aVar, v = Variable(a), Variable(rng.normal(size=3))
    d_a, d_v = rng.normal(size=4), rng.normal(size=3)
    rvec = RVector({aVar: d_a, v: d_v})
    reg = RegularizingCost([v], 0.7, MeanSquaredCost())
    rresult = reg.costR(rvec, x, RVariable(aVar, rvec))
    np.testing.assert_allclose(rresult.output(), reg.cost(x, Variable(a)).output())
    expected = 2.*np.dot(a - x, d_a) + 0.7*2.*np.dot(v.vector, d_v)
    np.testing.assert_allclose(rresult.rOutput()[0], expected)
    grad, rgrad = Gradient([aVar, v]), RGradient([aVar, v])
    rresult.propagateRGradient(np.array([1.]), np.array([0.]), rgrad, grad)
    np.testing.assert_allclose(rgrad[aVar], 2.*d_a)
    np.testing.assert_allclose(rgrad[v], 2.*0.7*d_v)

  def test_negative_penalty_warns(self):
    with pytest.warns(UserWarning, match="Negative regularization"):
      RegularizingCost([], -1., MeanSquaredCost())


class TestCostFunctionRegistry:
  """Cost functions are selectable by name."""

  @pytest.mark.parametrize("key", sorted(COST_FUNCTIONS))
  def test_lookup(self, key):
    assert isinstance(costFunction(key), COST_FUNCTIONS[key])
    assert isinstance(costFunction(key.upper()), COST_FUNCTIONS[key])

  def test_default_is_mean_squared(self):
    assert isinstance(costFunction(), MeanSquaredCost)

  def test_instance_passes_through(self):
    reg = RegularizingCost([], 1., AbsCost())
    assert costFunction(reg) is reg
    assert isinstance(reg, costFunc)

  def test_unknown_name(self):
    with pytest.raises(ValueError, match="Unknown cost function"):
      costFunction('hinge')

  def test_bad_arguments(self):
    with pytest.raises(ValueError):
      costFunction(3)
    with pytest.raises(ValueError):
      costFunction('quad', 'abs')


class TestLengthMismatch:
  """Expected and actual vectors of different lengths are rejected."""

  @pytest.mark.parametrize("costfunc", STRATEGIES, ids=IDS)
  @pytest.mark.parametrize("expected,actual", [([0.5], [0.2, 0.5, 0.7]),
                                               ([0.2, 0.5, 0.7], [0.5])],
                           ids=["short_expected", "short_actual"])
  def test_cost(self, costfunc, expected, actual):
    with pytest.raises(ValueError, match="incommensurate"):
      costfunc.cost(np.array(expected), Variable(actual)).output()

  @pytest.mark.parametrize("costfunc", STRATEGIES, ids=IDS)
  def test_cost_r(self, costfunc):
    aVar = Variable([0.2, 0.5, 0.7])
    rvec = RVector({aVar: np.ones(3)})
    with pytest.raises(ValueError, match="incommensurate"):
      costfunc.costR(rvec, np.array([0.5]), RVariable(aVar, rvec)).output()

  def test_mean_squared_gradient(self):
    aVar = Variable([1., 2., 3.])
    result = MeanSquaredCost().cost(np.array([0.]), aVar)
    with pytest.raises(ValueError, match="incommensurate"):
      result.propagateGradient(np.array([1.]), Gradient([aVar]))

  def test_regularized(self):
    reg = RegularizingCost([Variable([1.])], 0.1, DotCost())
    with pytest.raises(ValueError, match="incommensurate"):
      reg.cost(np.array([1.]), Variable([1., 2., 3.])).output()
