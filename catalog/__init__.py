# DS_Store Catalog Package
# ========================
# Assembles decoded containers into a validated DirectoryModel.

from catalog.model import DirectoryModel, IntegrityWarning, WarningKind
