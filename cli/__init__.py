# DS_Store Shell Package
# ======================
# Terminal rendering for decoded containers.
