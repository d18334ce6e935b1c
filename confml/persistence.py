"""
Model Persistence

Trained predictors are saved as a ModelBundle: an ordered mapping of
entry names to bytes, written to disk as a zip archive.

Bundle layout::

    meta.json                 type, seed, member indices, params, digests
    template.pkl              predictor without members
    members/<i>/model.pkl     fitted member without calibration scores
    members/<i>/scores.npz    calibration scores of the member

``meta.json`` is never encrypted. Every other entry is passed through the
injected ``encrypt`` function, and ``meta.json`` records the SHA-256
digest of each plaintext entry so a wrong key is detected on load instead
of producing a corrupted model.

Partially trained ACP / VAP bundles (see ``AggregatedPredictor.train``
with ``member_index``) are combined with ``merge``.
"""

import copy
import hashlib
import io
import json
import pickle
import zipfile
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import numpy as np
from scipy import sparse

from .exceptions import AggregationMismatchError, InvalidInputError, KeyMismatchError
from .predictors import (
    ACPClassifier,
    ACPRegressor,
    ICPClassifier,
    ICPRegressor,
    IVAPMember,
    TCPClassifier,
    VAPClassifier,
)
from .predictors.base import AggregatedPredictor
from .version import __version__

META = 'meta.json'
TEMPLATE = 'template.pkl'

PREDICTOR_TYPES = {
    cls.__name__: cls
    for cls in (ICPClassifier, ICPRegressor, ACPClassifier, ACPRegressor, TCPClassifier, VAPClassifier)
}


@dataclass
class EncryptionSpec:
    """
    Injected encryption.

    Parameters
    ----------
    encrypt : callable(bytes, key) -> bytes
    decrypt : callable(bytes, key) -> bytes
        May raise on a wrong key; the error is reported as KeyMismatchError
    key : any
        Passed unchanged to both functions
    """

    encrypt: Callable[[bytes, Any], bytes]
    decrypt: Callable[[bytes, Any], bytes]
    key: Any

    def __repr__(self) -> str:
        return "EncryptionSpec(key=<hidden>)"


class ModelBundle:
    """
    Ordered name -> bytes container with zip serialization.

    Examples
    --------
    >>> bundle = save(acp)
    >>> bundle.write('model.zip')
    >>> acp2 = load(ModelBundle.read('model.zip'))
    """

    def __init__(self, entries: Optional[Dict[str, bytes]] = None):
        self.entries: 'OrderedDict[str, bytes]' = OrderedDict(entries or {})

    def __repr__(self) -> str:
        return f"ModelBundle({list(self.entries)})"

    def __contains__(self, name: str) -> bool:
        return name in self.entries

    def __getitem__(self, name: str) -> bytes:
        try:
            return self.entries[name]
        except KeyError:
            raise InvalidInputError(f"Bundle has no entry '{name}'") from None

    def __setitem__(self, name: str, data: bytes) -> None:
        self.entries[name] = bytes(data)

    def names(self) -> List[str]:
        return list(self.entries)

    @property
    def meta(self) -> Dict[str, Any]:
        return json.loads(self[META].decode('utf-8'))

    def to_bytes(self) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
            for name, data in self.entries.items():
                zf.writestr(name, data)
        return buffer.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> 'ModelBundle':
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                entries = OrderedDict((name, zf.read(name)) for name in zf.namelist())
        except zipfile.BadZipFile as exc:
            raise InvalidInputError(f"Not a model bundle: {exc}") from exc
        if META not in entries:
            raise InvalidInputError("Not a model bundle: missing meta.json")
        return cls(entries)

    def write(self, path: Union[str, Path]) -> None:
        with open(path, 'wb') as f:
            f.write(self.to_bytes())
        print(f"✓ Model bundle saved to {path}")

    @classmethod
    def read(cls, path: Union[str, Path]) -> 'ModelBundle':
        with open(path, 'rb') as f:
            bundle = cls.from_bytes(f.read())
        print(f"✓ Model bundle loaded from {path}")
        return bundle


# ============================================================================
# Member (de)composition
# ============================================================================

def _npz_bytes(**arrays) -> bytes:
    buffer = io.BytesIO()
    np.savez(buffer, **arrays)
    return buffer.getvalue()


def _npz_load(data: bytes) -> Dict[str, np.ndarray]:
    with np.load(io.BytesIO(data), allow_pickle=False) as npz:
        return {name: npz[name] for name in npz.files}


def _split_member(member):
    """Member without its calibration data, and that data as arrays."""
    shell = copy.copy(member)
    if isinstance(member, ICPClassifier):
        arrays = {
            f"label_{col}": member.calibration_scores_[label]
            for col, label in enumerate(member.labels_)
        }
        shell.calibration_scores_ = None
    elif isinstance(member, ICPRegressor):
        arrays = {'scores': member.calibration_scores_}
        shell.calibration_scores_ = None
    elif isinstance(member, IVAPMember):
        arrays = {
            'scores': member.calibration_scores_,
            'targets': member.calibration_targets_,
        }
        shell.calibration_scores_ = None
        shell.calibration_targets_ = None
    elif isinstance(member, TCPClassifier):
        X = member._X.tocsr()
        arrays = {
            'X_data': X.data,
            'X_indices': X.indices,
            'X_indptr': X.indptr,
            'X_shape': np.array(X.shape),
            'y': member._y,
        }
        shell._X = None
        shell._y = None
    else:
        raise InvalidInputError(f"Cannot persist member of type {type(member).__name__}")
    return shell, arrays


def _join_member(shell, arrays: Dict[str, np.ndarray]):
    if isinstance(shell, ICPClassifier):
        shell.calibration_scores_ = {
            label: arrays[f"label_{col}"] for col, label in enumerate(shell.labels_)
        }
    elif isinstance(shell, ICPRegressor):
        shell.calibration_scores_ = arrays['scores']
    elif isinstance(shell, IVAPMember):
        shell.calibration_scores_ = arrays['scores']
        shell.calibration_targets_ = arrays['targets']
    elif isinstance(shell, TCPClassifier):
        shell._X = sparse.csr_matrix(
            (arrays['X_data'], arrays['X_indices'], arrays['X_indptr']),
            shape=tuple(arrays['X_shape'].tolist())
        )
        shell._y = arrays['y']
    return shell


def _member_entries(index: int):
    return f"members/{index}/model.pkl", f"members/{index}/scores.npz"


def _json_safe(params: Dict[str, Any]) -> Dict[str, Any]:
    return json.loads(json.dumps(params, default=repr, sort_keys=True))


def _digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


# ============================================================================
# Save / load / merge
# ============================================================================

def save(predictor, encryption: Optional[EncryptionSpec] = None) -> ModelBundle:
    """
    Save a trained (or partially trained) predictor.

    Parameters
    ----------
    predictor : ICP, ACP, TCP or VAP predictor
    encryption : EncryptionSpec, optional
        Encrypts every entry except meta.json

    Returns
    -------
    bundle : ModelBundle

    Raises
    ------
    InvalidInputError
        If the predictor type is not persistable or it has no trained part
    """
    type_name = type(predictor).__name__
    if type_name not in PREDICTOR_TYPES:
        raise InvalidInputError(f"Cannot save predictor of type {type_name}")

    if isinstance(predictor, AggregatedPredictor):
        if not predictor.members_:
            raise InvalidInputError(f"{type_name} has no trained members to save")
        members = dict(predictor.members_)
        template = copy.copy(predictor)
        template.members_ = {}
        n_members = predictor.n_members
    else:
        if not predictor.is_trained:
            raise InvalidInputError(f"{type_name} is not trained")
        members = {0: predictor}
        template = predictor.clone()
        n_members = 1

    plain = OrderedDict()
    plain[TEMPLATE] = pickle.dumps(template)
    for index in sorted(members):
        shell, arrays = _split_member(members[index])
        model_name, scores_name = _member_entries(index)
        plain[model_name] = pickle.dumps(shell)
        plain[scores_name] = _npz_bytes(**arrays)

    labels = getattr(predictor, 'labels_', None)
    meta = {
        'type': type_name,
        'seed': predictor.seed,
        'n_members': n_members,
        'members': sorted(members),
        'params': _json_safe(predictor.get_params()),
        'labels': list(labels) if labels is not None else None,
        'version': __version__,
        'encrypted': encryption is not None,
        'digests': {name: _digest(data) for name, data in plain.items()},
    }

    bundle = ModelBundle()
    bundle[META] = json.dumps(meta, indent=2).encode('utf-8')
    for name, data in plain.items():
        bundle[name] = encryption.encrypt(data, encryption.key) if encryption else data
    return bundle


def _read_entry(bundle: ModelBundle, meta: Dict[str, Any], name: str,
                encryption: Optional[EncryptionSpec]) -> bytes:
    data = bundle[name]
    if meta['encrypted']:
        if encryption is None:
            raise KeyMismatchError("Bundle is encrypted; an EncryptionSpec is required")
        try:
            data = encryption.decrypt(data, encryption.key)
        except Exception as exc:
            raise KeyMismatchError(f"Could not decrypt '{name}': {exc}") from exc
    if _digest(data) != meta['digests'].get(name):
        if meta['encrypted']:
            raise KeyMismatchError(f"Decrypted '{name}' does not match its digest; wrong key?")
        raise InvalidInputError(f"Entry '{name}' is corrupted")
    return data


def load(bundle: ModelBundle, encryption: Optional[EncryptionSpec] = None):
    """
    Restore a predictor from a bundle.

    Raises
    ------
    KeyMismatchError
        If the bundle is encrypted and no key, or the wrong key, is given
    InvalidInputError
        If the bundle is malformed
    """
    meta = bundle.meta
    if meta.get('type') not in PREDICTOR_TYPES:
        raise InvalidInputError(f"Unknown predictor type in bundle: {meta.get('type')}")

    members = {}
    for index in meta['members']:
        model_name, scores_name = _member_entries(index)
        shell = pickle.loads(_read_entry(bundle, meta, model_name, encryption))
        arrays = _npz_load(_read_entry(bundle, meta, scores_name, encryption))
        members[index] = _join_member(shell, arrays)

    template = pickle.loads(_read_entry(bundle, meta, TEMPLATE, encryption))
    if not isinstance(template, AggregatedPredictor):
        return members[0]
    template.members_ = members
    return template


def merge(bundles: Iterable[ModelBundle], encryption: Optional[EncryptionSpec] = None) -> ModelBundle:
    """
    Combine partial bundles of one aggregated predictor.

    The bundles must agree on predictor type, seed, member count, parameters,
    labels and encryption, and hold disjoint member indices. The result does
    not depend on the order of ``bundles``.

    Parameters
    ----------
    bundles : iterable of ModelBundle
    encryption : EncryptionSpec, optional
        When given, every entry is verified with it before merging

    Raises
    ------
    AggregationMismatchError
        If the bundles do not belong to the same aggregated predictor
    KeyMismatchError
        If ``encryption`` does not open one of the bundles
    """
    bundles = list(bundles)
    if not bundles:
        raise InvalidInputError("merge() needs at least one bundle")
    metas = [b.meta for b in bundles]

    first = metas[0]
    if first['type'] not in (ACPClassifier.__name__, ACPRegressor.__name__, VAPClassifier.__name__):
        raise AggregationMismatchError(f"Cannot merge {first['type']} bundles")
    for key in ('type', 'seed', 'n_members', 'params', 'labels', 'encrypted'):
        values = {json.dumps(m[key], sort_keys=True) for m in metas}
        if len(values) > 1:
            raise AggregationMismatchError(
                f"Bundles disagree on {key}: {sorted(values)}"
            )

    owner = {}
    for pos, meta in enumerate(metas):
        for index in meta['members']:
            if index in owner:
                raise AggregationMismatchError(f"Member {index} present in more than one bundle")
            owner[index] = pos

    if encryption is not None:
        for bundle, meta in zip(bundles, metas):
            for name in meta['digests']:
                _read_entry(bundle, meta, name, encryption)

    template_pos = owner[min(owner)]
    merged_meta = dict(metas[template_pos])
    merged_meta['members'] = sorted(owner)
    digests = {TEMPLATE: metas[template_pos]['digests'][TEMPLATE]}

    merged = ModelBundle()
    entries = OrderedDict()
    entries[TEMPLATE] = bundles[template_pos][TEMPLATE]
    for index in sorted(owner):
        pos = owner[index]
        for name in _member_entries(index):
            entries[name] = bundles[pos][name]
            digests[name] = metas[pos]['digests'][name]
    merged_meta['digests'] = digests

    merged[META] = json.dumps(merged_meta, indent=2).encode('utf-8')
    for name, data in entries.items():
        merged[name] = data
    return merged
