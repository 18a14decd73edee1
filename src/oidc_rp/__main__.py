from oidc_rp import main

main()
