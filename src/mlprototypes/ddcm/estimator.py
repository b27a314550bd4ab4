"""
DDCM estimator: trust-region optimisation with BFGS updates on an
adaptively growing sample.

Each iteration works on a prefix of a shuffled order of people. The
sample grows whenever the sampling error of the objective difference is
large compared with the reduction predicted by the quadratic model, so
early iterations are cheap and the full dataset is only used once the
optimiser needs that accuracy.

Algorithm (per iteration):
1. Expand the working sample (until every person is used)
2. Objective and gradient at the current parameter on the sample
3. Constrained dogleg step (p > 0, q > 0) and candidate objective
4. Sampling error of the objective difference → next sample increment
5. Agreement ratio ρ = actual / predicted reduction
6. BFGS update; accept step and updated Hessian if ρ > η
7. Trust radius update
8. On the full sample: stop once ||g|| < gradient_tol

After convergence the exact Hessian at the solution gives the asymptotic
covariance of the estimates, H⁻¹ / S.
"""

import numpy as np
from typing import Optional, Dict, List
import warnings

from .data import ChoiceData
from .objective import ChoiceObjective
from .sampling import AdaptiveSampler
from .trust_region import (
    TrustRegionOptions,
    constrained_direction,
    update_radius,
    bfgs_update
)


class DDCMEstimator:
    """
    Maximum-likelihood estimator for the discrete-choice model.

    Attributes:
        options: TrustRegionOptions
        initial_percent_sampling: Size of the first working sample (% of N)
        n_quadrature: Gauss-Legendre nodes for the α integral
        parameter_: Estimated θ = [β1, β2, p, q]
        objective_: Negative mean log-likelihood at parameter_ (working sample)
        gradient_norm_: ||g|| at parameter_ (working sample)
        hessian_: Final BFGS Hessian approximation
        covariance_: H⁻¹ / S from the exact Hessian, or None if singular
        standard_errors_: sqrt(diag(covariance_)), or None
        sample_size_: People in the final working sample
        n_iter_: Number of iterations run
        converged_: Whether the gradient test passed on the full sample
        history: Per-iteration diagnostics

    Example:
        >>> from mlprototypes.ddcm import generate_choice_data, DDCMEstimator
        >>> data, theta_true = generate_choice_data(n_people=2000, random_state=0)
        >>> estimator = DDCMEstimator(initial_percent_sampling=10.0, verbose=False)
        >>> estimator.fit(data, initial_parameter=np.array([0., 0., 0., 1., 1.]))
        >>> estimator.parameter_
        >>> estimator.standard_errors_
    """

    def __init__(
        self,
        options: Optional[TrustRegionOptions] = None,
        initial_percent_sampling: float = 10.0,
        n_quadrature: int = 32,
        verbose: bool = True,
        random_seed: Optional[int] = None
    ):
        """
        Initialize the estimator.

        Parameters:
            options: Trust-region settings (defaults: Δ0=0.01, Δmax=10, η=0.2,
                     gradient_tol=1e-3, max_iter=50)
            initial_percent_sampling: First working sample as % of N, in (0, 100]
            n_quadrature: Number of quadrature nodes
            verbose: Whether to print progress
            random_seed: Seed for the shuffle of people

        Raises:
            ValueError: If parameters are invalid
        """
        if not 0 < initial_percent_sampling <= 100:
            raise ValueError(
                f"initial_percent_sampling must be in (0, 100], got {initial_percent_sampling}"
            )

        self.options = options if options is not None else TrustRegionOptions()
        self.initial_percent_sampling = initial_percent_sampling
        self.n_quadrature = n_quadrature
        self.verbose = verbose
        self.random_seed = random_seed

        self.parameter_: Optional[np.ndarray] = None
        self.objective_: Optional[float] = None
        self.gradient_norm_: Optional[float] = None
        self.hessian_: Optional[np.ndarray] = None
        self.covariance_: Optional[np.ndarray] = None
        self.standard_errors_: Optional[np.ndarray] = None
        self.sample_size_ = 0
        self.n_iter_ = 0
        self.converged_ = False
        self.history: Dict[str, List] = self._empty_history()

    @staticmethod
    def _empty_history() -> Dict[str, List]:
        return {
            'sample_size': [],
            'objective': [],
            'candidate_objective': [],
            'predicted_reduction': [],
            'rho': [],
            'radius': [],
            'step_norm': [],
            'gradient_norm': [],
            'sampling_error': [],
            'percent_added': [],
            'accepted': []
        }

    def fit(self, data: ChoiceData, initial_parameter: np.ndarray) -> 'DDCMEstimator':
        """
        Estimate θ by adaptive-sample trust-region optimisation.

        Parameters:
            data: ChoiceData
            initial_parameter: Starting θ (n_parameters,), with p > 0 and q > 0

        Returns:
            self: Fitted estimator

        Raises:
            ValueError: If the initial parameter has the wrong length or is infeasible

        Example:
            >>> estimator.fit(data, initial_parameter=np.array([0., 0., 0., 1., 1.]))
            Starting DDCM estimation...
            Iter   1: n=200, f=1.0986, ||g||=0.3121, rho=0.998, radius=0.0200 (accepted)
            ...
            ✓ Converged at iteration 17
        """
        opts = self.options
        objective = ChoiceObjective(data, n_quadrature=self.n_quadrature)

        x = np.asarray(initial_parameter, dtype=float).copy()
        if x.shape != (data.n_parameters,):
            raise ValueError(
                f"initial_parameter must have length {data.n_parameters}, got shape {x.shape}"
            )
        if not objective.is_feasible(x):
            raise ValueError("initial_parameter must satisfy p > 0 and q > 0")

        sampler = AdaptiveSampler(data.n_people, random_seed=self.random_seed)
        sampler.shuffle()

        self.history = self._empty_history()
        self.converged_ = False
        self.n_iter_ = 0

        percent = self.initial_percent_sampling
        radius = opts.initial_radius
        hessian = None

        if self.verbose:
            print("Starting DDCM estimation...")
            print(f"  Data: {data.n_people} people × {data.n_alternatives} alternatives")
            print(f"  Parameters: {data.n_parameters}")
            print(f"  Initial sample: {self.initial_percent_sampling:.1f}%")
            print(f"  Starting point: {np.array2string(x, precision=4)}")
            print()

        for iteration in range(1, opts.max_iter + 1):
            self.n_iter_ = iteration

            # 1. Grow the working sample
            if sampler.is_exhausted:
                indices = sampler.indices
            else:
                indices = sampler.expand_subset(percent)
            sample_size = sampler.sample_size

            # 2. Objective and gradient on the working sample
            f_cur = objective.compute_objective(x, indices)
            g_cur = objective.compute_gradient(x, indices)
            if hessian is None:
                hessian = objective.compute_hessian(x, indices)

            # 3. Constrained trust-region step
            p, delta_m, x_next, radius = constrained_direction(
                radius, g_cur, hessian, x,
                objective.positive_indices,
                shrink_factor=opts.shrink_factor,
                max_shrinks=opts.max_shrinks
            )
            step_norm = np.linalg.norm(p)
            f_next = objective.compute_objective(x_next, indices)

            # 4. Sampling error of the objective difference
            sampling_error = np.nan
            if not sampler.is_exhausted:
                sampling_error = self._sampling_error(
                    objective, sampler, x, x_next, f_cur, f_next, indices
                )
                if delta_m <= 0:
                    percent = 100.0
                elif delta_m < 0.5 * sampling_error:
                    percent = 100.0 * (0.5 * sampling_error / delta_m) ** 2
                    percent = float(np.clip(percent, 0.0, 100.0))

            # 5. Agreement between the model and the objective
            rho = (f_cur - f_next) / delta_m if delta_m > 0 else 0.0

            # 6. BFGS update, accepted together with the step
            g_next = objective.compute_gradient(x_next, indices)
            updated_hessian = bfgs_update(
                hessian, x_next - x, g_next - g_cur,
                curvature_tol=opts.curvature_tol
            )
            accepted = rho > opts.eta
            if accepted:
                x = x_next
                hessian = updated_hessian
                g_accepted = g_next
            else:
                g_accepted = g_cur

            # 7. Radius update; rho = 0 when no reduction is predicted, which shrinks it
            radius = update_radius(rho, step_norm, radius, opts.max_radius)

            gradient_norm = np.linalg.norm(g_accepted)

            self.history['sample_size'].append(sample_size)
            self.history['objective'].append(f_cur)
            self.history['candidate_objective'].append(f_next)
            self.history['predicted_reduction'].append(delta_m)
            self.history['rho'].append(rho)
            self.history['radius'].append(radius)
            self.history['step_norm'].append(step_norm)
            self.history['gradient_norm'].append(gradient_norm)
            self.history['sampling_error'].append(sampling_error)
            self.history['percent_added'].append(percent)
            self.history['accepted'].append(accepted)

            if self.verbose:
                print(
                    f"Iter {iteration:3d}: "
                    f"n={sample_size}, "
                    f"f={f_cur:.4f}, "
                    f"||g||={gradient_norm:.4g}, "
                    f"rho={rho:.3f}, "
                    f"radius={radius:.4g}"
                    f"{' (accepted)' if accepted else ''}"
                )

            # 8. Stopping rule, only once every person is used
            if sampler.is_exhausted and gradient_norm < opts.gradient_tol:
                self.converged_ = True
                if self.verbose:
                    print(f"✓ Converged at iteration {iteration}")
                    print(f"  Gradient norm: {gradient_norm:.6f} < {opts.gradient_tol:.6f}")
                break

        if not self.converged_:
            warnings.warn(
                f"DDCM estimation did not converge after {opts.max_iter} iterations "
                f"(sample size {sampler.sample_size} of {data.n_people}). "
                f"Consider increasing max_iter or the initial sample.",
                RuntimeWarning
            )

        indices = sampler.indices
        self.parameter_ = x
        self.sample_size_ = sampler.sample_size
        self.hessian_ = hessian
        self.objective_ = objective.compute_objective(x, indices)
        self.gradient_norm_ = float(np.linalg.norm(objective.compute_gradient(x, indices)))
        self._estimate_covariance(objective, indices)

        if self.verbose:
            print()
            print(f"Total iterations: {self.n_iter_}")
            print(f"Final solution: {np.array2string(self.parameter_, precision=4)}")
            if self.standard_errors_ is not None:
                print(f"Standard errors: {np.array2string(self.standard_errors_, precision=4)}")
            print()

        return self

    @staticmethod
    def _sampling_error(
        objective: ChoiceObjective,
        sampler: AdaptiveSampler,
        x: np.ndarray,
        x_next: np.ndarray,
        f_cur: float,
        f_next: float,
        indices: np.ndarray
    ) -> float:
        """
        Estimated variance of the sample mean of l_n(x) - l_n(x_next).

            e = fpc / (S (S - 1)) · Σ_n ((l_n(x) - l_n(x_next)) - (f(x) - f(x_next)))²

        with the finite population correction fpc = (N - S) / (N - 1).
        """
        S = len(indices)
        if S < 2:
            return np.inf
        l_cur = objective.compute_contributions(x, indices)
        l_next = objective.compute_contributions(x_next, indices)
        deviations = (l_cur - l_next) - (f_cur - f_next)
        fpc = sampler.finite_population_correction()
        return float(fpc * np.sum(deviations ** 2) / (S * (S - 1.0)))

    def _estimate_covariance(self, objective: ChoiceObjective, indices: np.ndarray):
        """Covariance H⁻¹ / S from the exact Hessian at the solution."""
        final_hessian = objective.compute_hessian(self.parameter_, indices)
        try:
            inverse_hessian = np.linalg.inv(final_hessian)
        except np.linalg.LinAlgError:
            warnings.warn(
                "Final Hessian matrix is not invertible; covariance not available.",
                RuntimeWarning
            )
            self.covariance_ = None
            self.standard_errors_ = None
            return

        self.covariance_ = inverse_hessian / len(indices)
        variances = np.diag(self.covariance_)
        if np.any(variances <= 0):
            warnings.warn(
                "Final Hessian is not positive definite; some standard errors are NaN.",
                RuntimeWarning
            )
        self.standard_errors_ = np.sqrt(np.where(variances > 0, variances, np.nan))

    def predict_proba(self, data: ChoiceData) -> np.ndarray:
        """
        Predicted probability of every alternative for every person.

        Returns:
            probabilities: (N × J)

        Raises:
            ValueError: If model not fitted
        """
        if self.parameter_ is None:
            raise ValueError("Model not fitted. Call fit() first.")
        objective = ChoiceObjective(data, n_quadrature=self.n_quadrature)
        return objective.predict_proba(self.parameter_)

    def predict(self, data: ChoiceData) -> np.ndarray:
        """Most likely alternative for every person."""
        return np.argmax(self.predict_proba(data), axis=1)

    def score(self, data: ChoiceData) -> float:
        """Mean log-likelihood of the observed choices under parameter_."""
        if self.parameter_ is None:
            raise ValueError("Model not fitted. Call fit() first.")
        objective = ChoiceObjective(data, n_quadrature=self.n_quadrature)
        return -objective.compute_objective(self.parameter_)

    @staticmethod
    def parameter_names(data: ChoiceData) -> List[str]:
        """Readable names for the entries of θ."""
        return (
            [f"beta1[{k}]" for k in range(data.n_first_stage)]
            + [f"beta2[{k}]" for k in range(data.n_second_stage)]
            + ['p', 'q']
        )

    def summary(self, data: ChoiceData) -> str:
        """Table of estimates and standard errors."""
        if self.parameter_ is None:
            raise ValueError("Model not fitted. Call fit() first.")
        names = self.parameter_names(data)
        errors = (
            self.standard_errors_ if self.standard_errors_ is not None
            else np.full(len(names), np.nan)
        )
        lines = [
            "=" * 50,
            "DDCM Estimation Summary",
            "=" * 50,
            f"Iterations:               {self.n_iter_}",
            f"Converged:                {self.converged_}",
            f"Sample size:              {self.sample_size_} of {data.n_people}",
            f"Objective (-mean LL):     {self.objective_:.6f}",
            f"Gradient norm:            {self.gradient_norm_:.3g}",
            "",
            f"{'Parameter':<12} {'Estimate':>12} {'Std. error':>12}",
            "-" * 50,
        ]
        for name, value, error in zip(names, self.parameter_, errors):
            lines.append(f"{name:<12} {value:12.4f} {error:12.4f}")
        lines.append("=" * 50)
        return "\n".join(lines)

    def plot_convergence(self, figsize=(12, 4)):
        """
        Plot objective, gradient norm and working sample size per iteration.

        Parameters:
            figsize: Figure size (width, height)
        """
        try:
            import matplotlib.pyplot as plt
        except ImportError:
            print("matplotlib not available. Install with: pip install matplotlib")
            return

        if len(self.history['objective']) == 0:
            print("No estimation history. Fit the model first.")
            return

        fig, axes = plt.subplots(1, 3, figsize=figsize)
        iterations = range(1, len(self.history['objective']) + 1)

        axes[0].plot(iterations, self.history['objective'], 'b-', linewidth=2)
        axes[0].set_xlabel('Iteration')
        axes[0].set_ylabel('-mean log-likelihood')
        axes[0].set_title('Objective')
        axes[0].grid(True, alpha=0.3)

        axes[1].semilogy(iterations, self.history['gradient_norm'], 'r-', linewidth=2)
        axes[1].axhline(self.options.gradient_tol, color='k', linestyle='--', alpha=0.5)
        axes[1].set_xlabel('Iteration')
        axes[1].set_ylabel('||g||')
        axes[1].set_title('Gradient Norm')
        axes[1].grid(True, alpha=0.3)

        axes[2].plot(iterations, self.history['sample_size'], 'g-', linewidth=2)
        axes[2].set_xlabel('Iteration')
        axes[2].set_ylabel('People')
        axes[2].set_title('Working Sample Size')
        axes[2].grid(True, alpha=0.3)

        plt.tight_layout()
        plt.show()
