from .subsample import main

main()
