"""
File collaborators: statistic images in, label images and tables out.
"""
import os
import re

import nibabel as nib
import nilearn.image
import numpy as np
import pandas as pd

from statpeaks.utils import logger
from statpeaks.volume import StatKind, VoxelField

_SPM_DESCRIP = re.compile(r"SPM\{(?P<kind>[TFZ])_\[(?P<df>[^\]]*)\]\}")
_BRACKETS = re.compile(r"\[(?P<df>[^\]]*)\]")


def parse_description(descrip):
    """
    Read the statistic kind and degrees of freedom from an image description such as "SPM{T_[24.0]} - contrast".
    :param descrip: header description string
    :return: (StatKind or None, df or None). df is a float, or a (df1, df2) tuple for F statistics.
    """
    match = _SPM_DESCRIP.search(descrip or "")
    kind = StatKind(match.group("kind")) if match else None
    if match is None:
        match = _BRACKETS.search(descrip or "")
    if match is None:
        return kind, None
    try:
        values = [float(v) for v in re.split(r"[,\s]+", match.group("df").strip()) if v]
    except ValueError:
        return kind, None
    if not values:
        return kind, None
    if kind is StatKind.F and len(values) >= 2:
        return kind, (values[0], values[1])
    return kind, values[-1]


def _header_description(image):
    try:
        descrip = image.header["descrip"]
    except (KeyError, TypeError, ValueError):
        return ""
    descrip = np.asarray(descrip).item()
    return descrip.decode("latin-1") if isinstance(descrip, bytes) else str(descrip)


def load_volume(in_file, stat_kind=None, df=None):
    """
    Load a statistic image.
    :param in_file: path to a NIfTI (or any nibabel readable) 3D image
    :param stat_kind: statistic kind; read from the header description if None, T if not found there
    :param df: degrees of freedom; read from the header description if None
    :return: VoxelField
    """
    image = nib.load(in_file)
    descrip = _header_description(image)
    header_kind, header_df = parse_description(descrip)
    if stat_kind is None:
        stat_kind = header_kind or StatKind.T
    if df is None:
        df = header_df
        if df is None and StatKind(stat_kind).requires_df:
            logger.warning(f"Degrees of freedom not found in the header of {in_file}")
    logger.debug(f"Loaded {in_file}: shape {image.shape}, kind {StatKind(stat_kind).value}, df {df}")
    return VoxelField(data=image.get_fdata(), affine=image.affine, df=df, stat_kind=stat_kind,
                      name=os.path.basename(str(in_file)))


def save_label_image(out_file, labels, affine):
    """
    Write a cluster label volume.
    :param out_file: output filename
    :param labels: integer label volume
    :param affine: voxel-to-mm affine
    """
    dirname = os.path.dirname(str(out_file))
    if dirname:
        os.makedirs(dirname, exist_ok=True)
    image = nib.Nifti1Image(np.asarray(labels, dtype=np.int32), np.asarray(affine))
    image.to_filename(str(out_file))
    logger.info(f"Saved cluster labels to {out_file}")


def write_table(table, out_file, details=False):
    """
    Write a ClusterTable to a CSV file.
    """
    dirname = os.path.dirname(str(out_file))
    if dirname:
        os.makedirs(dirname, exist_ok=True)
    table.to_dataframe(details=details).to_csv(out_file, index=False)
    logger.info(f"Saved cluster table with {len(table)} peaks to {out_file}")


class AtlasLabeler:
    """
    Look up region names in a label image defined on the grid of the statistic map.
    :param atlas_data: 3D integer label volume (0 = no region)
    :param names: mapping from label id to region name
    """

    def __init__(self, atlas_data, names):
        self.atlas_data = np.rint(np.asarray(atlas_data)).astype(np.int64)
        self.names = {int(k): str(v) for k, v in dict(names).items()}

    def __call__(self, voxel):
        i, j, k = (int(v) for v in voxel)
        shape = self.atlas_data.shape
        if not (0 <= i < shape[0] and 0 <= j < shape[1] and 0 <= k < shape[2]):
            return None
        label_id = int(self.atlas_data[i, j, k])
        if label_id == 0:
            return None
        return self.names.get(label_id)

    @classmethod
    def from_files(cls, atlas_file, labels_file, field):
        """
        :param atlas_file: label image, resampled (nearest neighbor) to the grid of `field` if needed
        :param labels_file: CSV or TSV table whose first two columns are label id and region name
        :param field: VoxelField defining the target grid
        """
        atlas_image = nib.load(atlas_file)
        if atlas_image.shape[:3] != field.shape or not np.allclose(atlas_image.affine, field.affine):
            logger.debug(f"Resampling atlas {atlas_file} to the statistic image grid")
            reference = nib.Nifti1Image(np.zeros(field.shape, dtype=np.float32), np.asarray(field.affine))
            atlas_image = nilearn.image.resample_to_img(atlas_image, reference,
                                                        interpolation="nearest",
                                                        force_resample=True,
                                                        copy_header=True)
        sep = "\t" if str(labels_file).endswith((".tsv", ".txt")) else ","
        label_table = pd.read_csv(labels_file, sep=sep)
        names = dict(zip(label_table.iloc[:, 0], label_table.iloc[:, 1]))
        return cls(atlas_image.get_fdata(), names)
