"""
confml Quickstart Example
=========================

This example demonstrates the complete confml workflow:
1. Build a dataset from a DataFrame
2. Tune an aggregated conformal classifier with grid search
3. Evaluate it with cross-validation
4. Predict p-values and prediction sets
5. Save, reload and merge models
6. Conformal regression intervals

NOTE: This example uses synthetic data for demonstration.
Replace with your own data in production.
"""

import os
import tempfile

import numpy as np
import pandas as pd
from sklearn.linear_model import Ridge
from sklearn.svm import LinearSVC

from confml import (
    AbsDiffNCM,
    ACPClassifier,
    ACPRegressor,
    ClassifierAlgorithm,
    Dataset,
    GridSearch,
    ICPClassifier,
    ICPRegressor,
    KFoldCV,
    ModelBundle,
    NegativeDistanceToHyperplaneNCM,
    RandomSampler,
    RegressorAlgorithm,
    TestRunner,
    load,
    merge,
    save,
)
from confml.evaluation import (
    AverageC,
    CPAccuracy,
    MeanPredictionIntervalWidth,
    ObservedFuzziness,
    ProportionSingleLabelPredictions,
)

rng = np.random.default_rng(42)

print("="*70)
print("confml Quickstart Example")
print("="*70)

# ===== 1. Prepare Data =====
print("\n[Step 1] Generating synthetic customer data...")
print("(In production, load your own CSV files here)\n")


def generate_customers(n_customers):
    """Customer features and a churn label driven by recency and frequency."""
    df = pd.DataFrame({
        'recency': rng.exponential(scale=30, size=n_customers),
        'frequency': rng.poisson(lam=5, size=n_customers).astype(float),
        'tenure': rng.uniform(1, 36, size=n_customers),
    })
    logit = -1.0 + 0.05 * df['recency'] - 0.3 * df['frequency'] - 0.02 * df['tenure']
    df['churned'] = (1 / (1 + np.exp(-logit)) > rng.random(n_customers)).astype(int)
    return df


train_df = generate_customers(300)
new_df = generate_customers(10)

features = ['recency', 'frequency', 'tenure']
dataset = Dataset.from_arrays(train_df[features], train_df['churned'])
new_customers = Dataset.from_arrays(new_df[features], new_df['churned']).records

print(f"Training records: {len(dataset)}, churn rate {train_df['churned'].mean():.1%}")


# ===== 2. Grid Search =====
print("\n" + "="*70)
print("[Step 2] Tuning the ACP with grid search")
print("="*70)

icp = ICPClassifier(NegativeDistanceToHyperplaneNCM(ClassifierAlgorithm(LinearSVC())))
acp = ACPClassifier(icp, RandomSampler(calibration_ratio=0.2, n_splits=10), seed=42)

gs = GridSearch(KFoldCV(n_folds=5, seed=42), metric=ObservedFuzziness(), confidence=0.8)
result = gs.search(acp, dataset, {'C': [0.01, 0.1, 1.0, 10.0]})
print(result.to_frame()[['C', 'status', 'ObservedFuzziness']])


# ===== 3. Evaluate =====
print("\n" + "="*70)
print("[Step 3] Cross-validated evaluation at the best parameters")
print("="*70 + "\n")

runner = TestRunner(KFoldCV(n_folds=10, seed=42))
evaluation = runner.evaluate(acp, dataset, [
    CPAccuracy(0.8),
    ProportionSingleLabelPredictions(0.8),
    AverageC(0.8),
    ObservedFuzziness(),
])
print(evaluation.summary)


# ===== 4. Predict =====
print("\n" + "="*70)
print("[Step 4] Predicting new customers")
print("="*70 + "\n")

acp.train(dataset)
sets = acp.predict_set(new_customers, confidence=0.8)
pvalues = acp.predict(new_customers)
for record, pv, labels in zip(new_customers, pvalues, sets):
    print(f"  true={record.label}  p(0)={pv[0]:.3f}  p(1)={pv[1]:.3f}  set={sorted(labels)}")


# ===== 5. Save / Load / Merge =====
print("\n" + "="*70)
print("[Step 5] Saving, loading and merging")
print("="*70 + "\n")

with tempfile.TemporaryDirectory() as tmp:
    path = os.path.join(tmp, 'acp.zip')
    save(acp).write(path)
    restored = load(ModelBundle.read(path))
    assert np.array_equal(restored.predict_pvalues(new_customers),
                          acp.predict_pvalues(new_customers))

# Members can be trained separately (e.g. on different machines) and merged
partial = []
for index in range(acp.n_members):
    worker = acp.clone()
    worker.train(dataset, member_index=index, verbose=False)
    partial.append(save(worker))
merged = load(merge(partial))
print(f"✓ Merged {len(partial)} partial bundles into {merged.n_members} members")


# ===== 6. Regression =====
print("\n" + "="*70)
print("[Step 6] Conformal regression intervals")
print("="*70 + "\n")

reg_dataset = Dataset.from_arrays(train_df[['frequency', 'tenure']], train_df['recency'])
acp_reg = ACPRegressor(
    ICPRegressor(AbsDiffNCM(RegressorAlgorithm(Ridge()))),
    RandomSampler(calibration_ratio=0.2, n_splits=10),
    seed=42
)
reg_eval = TestRunner(KFoldCV(n_folds=5)).evaluate(
    acp_reg, reg_dataset, [CPAccuracy(0.9), MeanPredictionIntervalWidth(0.9)]
)
print(reg_eval.summary)


# ===== Summary =====
print("\n" + "="*70)
print("✅ Quickstart Complete!")
print("="*70 + "\n")
